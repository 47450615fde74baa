from pytest_archon import archrule


def test_mfa_is_standalone() -> None:
    """
    The MFA package must not depend on the wider framework packages.
    It ships as an independent library with its own error root.
    """
    (
        archrule("mfa_is_standalone")
        .match("cqrs_ddd_mfa*")
        .should_not_import("cqrs_ddd_core*")
        .should_not_import("cqrs_ddd_identity*")
        .should_not_import("cqrs_ddd_advanced_core*")
        .check("cqrs_ddd_mfa")
    )


def test_verifiers_do_not_know_the_orchestrator() -> None:
    """
    Verifiers are leaf services. Only the orchestrator composes them.
    """
    (
        archrule("verifier_isolation")
        .match("cqrs_ddd_mfa.totp")
        .match("cqrs_ddd_mfa.otp")
        .match("cqrs_ddd_mfa.backup_codes")
        .match("cqrs_ddd_mfa.registry")
        .match("cqrs_ddd_mfa.session")
        .match("cqrs_ddd_mfa.limiter")
        .should_not_import("cqrs_ddd_mfa.orchestrator")
        .should_not_import("cqrs_ddd_mfa.factory")
        .should_not_import("cqrs_ddd_mfa.sweeper")
        .check("cqrs_ddd_mfa")
    )


def test_models_isolation() -> None:
    """
    Records and value types must stay free of services and adapters.
    """
    (
        archrule("models_isolation")
        .match("cqrs_ddd_mfa.models")
        .match("cqrs_ddd_mfa.exceptions")
        .match("cqrs_ddd_mfa.clock")
        .should_not_import("cqrs_ddd_mfa.totp")
        .should_not_import("cqrs_ddd_mfa.otp")
        .should_not_import("cqrs_ddd_mfa.backup_codes")
        .should_not_import("cqrs_ddd_mfa.session")
        .should_not_import("cqrs_ddd_mfa.audit*")
        .should_not_import("cqrs_ddd_mfa.observability*")
        .check("cqrs_ddd_mfa")
    )


def test_observability_isolation() -> None:
    """
    Metrics and tracing helpers are leaf modules.
    """
    (
        archrule("observability_isolation")
        .match("cqrs_ddd_mfa.observability*")
        .should_not_import("cqrs_ddd_mfa.orchestrator")
        .should_not_import("cqrs_ddd_mfa.factory")
        .check("cqrs_ddd_mfa")
    )
