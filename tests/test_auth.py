from datetime import timedelta

import pytest
from pymongo.errors import AutoReconnect

from auth import AuthGate, GateState, IdentityProvider, Requirement, derive_role, role_satisfies
from database import utcnow
from errors import AuthRequired, ValidationError
from schemas import AuthSession, UserIdentity


def session_with(role):
    return AuthSession(current_user=UserIdentity(id="u1", email="shopper@example.com"), role=role)


@pytest.mark.parametrize("claims, expected", [
    (None, "guest"),
    ({"role": "admin"}, "admin"),
    ({"role": "shop_admin"}, "shop_admin"),
    ({"role": "user"}, "customer"),
    ({"user_metadata": {"role": "shop_admin"}}, "shop_admin"),
    ({"role": None, "user_metadata": {"role": "admin"}}, "admin"),
    ({"email": "x@example.com"}, "customer"),
    ({"role": "superuser"}, "customer"),
])
def test_derive_role(claims, expected):
    assert derive_role(claims) == expected


def test_admin_is_a_superset_of_shop_admin():
    assert role_satisfies("admin", Requirement.ADMIN)
    assert role_satisfies("admin", Requirement.SHOP_ADMIN)
    assert role_satisfies("shop_admin", Requirement.SHOP_ADMIN)
    assert not role_satisfies("shop_admin", Requirement.ADMIN)
    assert not role_satisfies("customer", Requirement.SHOP_ADMIN)
    assert not role_satisfies("guest", Requirement.AUTHENTICATED)
    assert role_satisfies("guest", Requirement.NONE)


def test_gate_starts_in_checking():
    assert AuthGate(lambda: None).state == GateState.CHECKING


def test_no_session_redirects_to_login_with_return_path():
    gate = AuthGate(lambda: None, login_path="/auth")

    decision = gate.check("/admin/orders", Requirement.ADMIN)

    assert decision.state == GateState.UNAUTHENTICATED == gate.state
    assert decision.redirect_to == "/auth?next=%2Fadmin%2Forders"
    assert not decision.allowed


def test_customer_is_sent_to_denied_path(notifier):
    gate = AuthGate(lambda: session_with("customer"), denied_path="/", notifier=notifier)

    decision = gate.check("/admin/orders", Requirement.ADMIN)

    assert decision.state == GateState.UNAUTHORIZED
    assert decision.redirect_to.startswith("/?notice=")
    assert decision.notice == "You do not have access to this page"
    assert notifier.pending[0].title == "Access denied"


def test_authorized_roles():
    assert AuthGate(lambda: session_with("admin")).check("/admin", Requirement.SHOP_ADMIN).allowed
    assert AuthGate(lambda: session_with("shop_admin")).check("/shop", Requirement.SHOP_ADMIN).allowed
    assert not AuthGate(lambda: session_with("shop_admin")).check("/admin", Requirement.ADMIN).allowed


def test_open_route_renders_for_guests():
    decision = AuthGate(lambda: None).check("/products")
    assert decision.allowed
    assert decision.session.role == "guest"


def test_every_check_resolves_the_session_again():
    sessions = [session_with("admin"), None]
    calls = []

    def resolve():
        calls.append(1)
        return sessions[len(calls) - 1]

    gate = AuthGate(resolve)
    assert gate.check("/admin", Requirement.ADMIN).allowed
    assert gate.check("/admin", Requirement.ADMIN).state == GateState.UNAUTHENTICATED
    assert len(calls) == 2


def test_resolution_failure_counts_as_signed_out(notifier):
    def resolve():
        raise AutoReconnect("connection reset")

    decision = AuthGate(resolve, notifier=notifier).check("/orders", Requirement.AUTHENTICATED)

    assert decision.state == GateState.UNAUTHENTICATED
    assert notifier.pending[0].title == "Authentication error. Please try again."


def test_sign_up_sign_in_and_out(db):
    provider = IdentityProvider(db, salt="test")

    created = provider.sign_up("Ada", "Ada@Example.com", "correct horse")
    assert created.role == "customer"
    assert created.current_user.email == "ada@example.com"

    session = provider.sign_in("ada@example.com", "correct horse")
    assert provider.get_session(session.token).current_user.id == created.current_user.id

    provider.sign_out(session.token)
    assert provider.get_session(session.token) is None
    assert provider.get_session(created.token) is not None


def test_sign_in_rejects_bad_credentials(db):
    provider = IdentityProvider(db, salt="test")
    provider.sign_up("Ada", "ada@example.com", "correct horse")

    with pytest.raises(AuthRequired):
        provider.sign_in("ada@example.com", "wrong horse")
    with pytest.raises(AuthRequired):
        provider.sign_in("nobody@example.com", "correct horse")


def test_sign_up_validation(db):
    provider = IdentityProvider(db, salt="test")
    provider.sign_up("Ada", "ada@example.com", "correct horse")

    with pytest.raises(ValidationError):
        provider.sign_up("Ada", "ADA@example.com", "another password")
    with pytest.raises(ValidationError):
        provider.sign_up("Bob", "bob@example.com", "short")
    with pytest.raises(ValidationError):
        provider.sign_up("Eve", "eve@example.com", "long enough", role="root")


def test_expired_session_is_dropped(db):
    provider = IdentityProvider(db, salt="test")
    session = provider.sign_up("Ada", "ada@example.com", "correct horse")
    db["session"].update_one({"token": session.token}, {"$set": {"expires_at": utcnow() - timedelta(minutes=1)}})

    assert provider.get_session(session.token) is None
    assert db["session"].count_documents({"token": session.token}) == 0


def test_role_comes_from_user_metadata_fallback(db):
    provider = IdentityProvider(db, salt="test")
    session = provider.sign_up("Sam", "sam@example.com", "correct horse")
    db["user"].update_one({"email": "sam@example.com"},
                          {"$set": {"role": None, "user_metadata": {"role": "shop_admin"}}})

    assert provider.get_session(session.token).role == "shop_admin"
