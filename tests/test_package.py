"""Tests for dicomsync package imports and exports."""

from __future__ import annotations

from dicomsync.core.exceptions import (
    AuthError,
    AuthorizationDenied,
    ConfigurationError,
    DicomSyncError,
    ProfileNotFoundError,
    ProtocolError,
    RemoteOperationError,
    RetryExhaustedError,
    TransportError,
)


class TestPackageImports:
    """Tests for package imports."""

    def test_import_dicomsync(self):
        import dicomsync

        assert hasattr(dicomsync, "__version__")
        assert dicomsync.ExportService is not None
        assert dicomsync.ImportService is not None

    def test_import_core_modules(self):
        from dicomsync.core import (
            auth,
            client,
            config,
            exceptions,
            logging,
            output,
            session,
            status,
        )

        assert auth is not None
        assert client is not None
        assert config is not None
        assert exceptions is not None
        assert logging is not None
        assert output is not None
        assert session is not None
        assert status is not None

    def test_import_transfer_modules(self):
        from dicomsync.transfer import constants, exporter, files, importer, multipart

        assert constants is not None
        assert exporter is not None
        assert files is not None
        assert importer is not None
        assert multipart is not None

    def test_import_cli(self):
        from dicomsync.cli.main import cli, main

        assert cli is not None
        assert callable(main)


class TestExceptions:
    """Tests for exception messages and hierarchy."""

    def test_all_derive_from_base(self):
        for exc_type in (
            AuthError,
            AuthorizationDenied,
            ConfigurationError,
            ProtocolError,
            RemoteOperationError,
            TransportError,
        ):
            assert issubclass(exc_type, DicomSyncError)
        assert issubclass(ProfileNotFoundError, ConfigurationError)
        assert issubclass(RetryExhaustedError, TransportError)

    def test_details_rendered(self):
        err = ConfigurationError("Bad value", field="store_name", value="a/b")
        assert str(err) == "Bad value (field=store_name, value='a/b')"

    def test_auth_error(self):
        err = AuthError(4, RuntimeError("denied"))
        assert err.attempts == 4
        assert str(err).startswith("Sign-in failed after 4 attempts: denied")

    def test_authorization_denied(self):
        assert str(AuthorizationDenied("https://x", 403)) == "Forbidden for https://x (status=403)"

    def test_retry_exhausted(self):
        err = RetryExhaustedError("https://x", 3, RuntimeError("503"))
        assert err.attempts == 3
        assert "failed after 3 attempts" in str(err)
