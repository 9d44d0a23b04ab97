import pytest

from quizportal.cli.claims import main
from quizportal.domain.errors import TransactionError


@pytest.fixture
def seeded(directory):
    directory.upsert_user(uid="u_admin", email="Admin@Example.com", claims={"admin": True})
    directory.upsert_user(uid="u_ops", email="ops@example.com", claims={"operational": True})
    directory.upsert_user(uid="u_none", email=None, claims={})
    return directory


def test_list_admins_defaults_to_admin_role(seeded, capsys):
    assert main(["list-admins"], directory_factory=lambda: seeded) == 0
    out = capsys.readouterr().out
    assert "- email: Admin@Example.com" in out
    assert "  uid  : u_admin" in out
    assert "u_ops" not in out


def test_list_admins_all_and_role(seeded, capsys):
    assert main(["list-admins", "--all"], directory_factory=lambda: seeded) == 0
    out = capsys.readouterr().out
    assert "(no email)" in out
    assert out.count("- email:") == 3

    assert main(["list-admins", "--role", "OPERATIONAL"], directory_factory=lambda: seeded) == 0
    assert "u_ops" in capsys.readouterr().out


def test_list_admins_empty(directory, capsys):
    assert main(["list-admins"], directory_factory=lambda: directory) == 0
    assert "No admin users found." in capsys.readouterr().out


def test_invalid_role_is_usage_error(seeded, capsys):
    assert main(["list-admins", "--role", "owner"], directory_factory=lambda: seeded) == 1
    assert "Role must be one of: admin, operational" in capsys.readouterr().err


def test_set_claim_grant_and_unset(seeded, capsys):
    assert main(["set-claim", "ops@example.com"], directory_factory=lambda: seeded) == 0
    assert seeded.get_user("u_ops").claims == {"operational": True, "admin": True}
    assert "Success. admin claim updated" in capsys.readouterr().out

    assert main(["set-claim", "OPS@example.com", "--role", "operational", "--unset"], directory_factory=lambda: seeded) == 0
    assert seeded.get_user("u_ops").claims == {"admin": True}


def test_set_claim_failures(seeded, capsys):
    assert main(["set-claim"], directory_factory=lambda: seeded) == 1
    assert "usage:" in capsys.readouterr().out

    assert main(["set-claim", "nobody@example.com"], directory_factory=lambda: seeded) == 1
    assert "no user with email" in capsys.readouterr().err


def test_directory_failures_exit_non_zero(capsys):
    def _broken():
        raise OSError("database unreachable")

    assert main(["list-admins"], directory_factory=_broken) == 1
    assert "Failed to initialize identity directory" in capsys.readouterr().err

    class _FailingDirectory:
        def list_users(self):
            raise TransactionError("read failed")

    assert main(["list-admins"], directory_factory=_FailingDirectory) == 1
    assert "Failed to list users" in capsys.readouterr().err


def test_missing_subcommand(capsys):
    assert main([]) == 1


@pytest.mark.parametrize(
    "argv",
    [
        ["list-admins", "--bogus"],
        ["list-admins", "--role"],
        ["set-claim", "ops@example.com", "--role"],
        ["frobnicate"],
    ],
)
def test_bad_arguments_exit_with_one(seeded, capsys, argv):
    assert main(argv, directory_factory=lambda: seeded) == 1
    err = capsys.readouterr().err
    assert "usage:" in err
    assert "quizportal-admin" in err
