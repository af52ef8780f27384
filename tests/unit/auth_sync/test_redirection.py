"""
Unit tests for RedirectionHandler hand-off URLs.

Coverage:
* build_return_url / parse_return_url round trip
* redirect_to_auth persists the return URL and navigates; failures raise
  RedirectionError with a provider-qualified message
* handle_auth_return persists state + raw result for both outcomes
* complete_handoff on the landing page; a bare return URL never overwrites state
"""

from __future__ import annotations

from urllib.parse import parse_qs, urlsplit

import pytest

from easyroom.auth_sync.clock import ManualClock, now_ms
from easyroom.auth_sync.config import RedirectionConfig
from easyroom.auth_sync.errors import RedirectionError
from easyroom.auth_sync.manager import AuthStateManager
from easyroom.auth_sync.models import AuthResult, AuthReturnData, AuthState
from easyroom.auth_sync.redirection import RedirectionHandler
from easyroom.auth_sync.state_store import AUTH_RESULT_KEY, RETURN_URL_KEY
from easyroom.auth_sync.store import MemoryStorage
from easyroom.auth_sync.timer import ManualTimer

BASE_URL = "https://app.example.com"


# --------------------------------------------------------------------------- #
# helpers                                                                     #
# --------------------------------------------------------------------------- #
def _handler(config: RedirectionConfig | None = None, navigate=None):
    clock = ManualClock()
    storage = MemoryStorage()
    manager = AuthStateManager(storage, clock=clock, timer=ManualTimer(clock))
    visited: list[str] = []
    handler = RedirectionHandler(
        manager,
        config=config or RedirectionConfig(base_url=BASE_URL),
        navigate=navigate or visited.append,
        clock=clock,
    )
    return handler, manager, storage, visited, clock


def _query(url: str) -> dict[str, list[str]]:
    return parse_qs(urlsplit(url).query)


# --------------------------------------------------------------------------- #
# URL building / parsing                                                      #
# --------------------------------------------------------------------------- #
def test_build_return_url_shape() -> None:
    handler, *_, clock = _handler()
    url = handler.build_return_url(BASE_URL)

    parts = urlsplit(url)
    assert f"{parts.scheme}://{parts.netloc}{parts.path}" == f"{BASE_URL}/auth/callback/verified"
    assert _query(url) == {"t": [str(now_ms(clock))], "source": ["external_app"]}


def test_build_return_url_rejects_relative_base() -> None:
    handler, *_ = _handler()
    with pytest.raises(ValueError):
        handler.build_return_url("/relative")


def test_handoff_round_trip() -> None:
    handler, *_ = _handler()
    url = handler.build_return_url(BASE_URL)

    assert handler.parse_return_url(url) == AuthReturnData(success=False)
    assert handler.parse_return_url(url + "&success=true&user_id=u1&session_token=t1") == AuthReturnData(
        success=True, user_id="u1", session_token="t1"
    )


def test_parse_return_url_error_and_garbage() -> None:
    handler, *_ = _handler()

    data = handler.parse_return_url(f"{BASE_URL}/x?success=false&error=access_denied")
    assert data == AuthReturnData(success=False, error="access_denied")

    # never raises, even for non-URL input
    broken = handler.parse_return_url(12345)  # type: ignore[arg-type]
    assert broken.success is False
    assert broken.error is not None and broken.error.startswith("Failed to parse return URL")


def test_build_auth_provider_url_default_and_override() -> None:
    config = RedirectionConfig(base_url=BASE_URL, provider_paths={"kakao": "/oauth/kakao/login"})
    handler, *_ = _handler(config)

    google = handler.build_auth_provider_url("Google", "https://app.example.com/back")
    assert google.startswith(f"{BASE_URL}/auth/google?")
    assert _query(google) == {"return_url": ["https://app.example.com/back"]}

    kakao = handler.build_auth_provider_url("kakao", "r")
    assert kakao.startswith(f"{BASE_URL}/oauth/kakao/login?")


# --------------------------------------------------------------------------- #
# redirect_to_auth                                                            #
# --------------------------------------------------------------------------- #
def test_redirect_to_auth_persists_return_url_and_navigates() -> None:
    handler, _, storage, visited, _ = _handler()

    handler.redirect_to_auth("google")

    assert len(visited) == 1
    return_url = storage.get_item(RETURN_URL_KEY)
    assert return_url is not None
    assert _query(visited[0]) == {"return_url": [return_url]}
    assert handler.get_stored_return_url() == return_url

    handler.clear_stored_return_url()
    assert handler.get_stored_return_url() is None


def test_redirect_to_auth_uses_explicit_return_url() -> None:
    handler, _, storage, visited, _ = _handler()
    handler.redirect_to_auth("naver", "https://app.example.com/rooms/1")

    assert storage.get_item(RETURN_URL_KEY) == "https://app.example.com/rooms/1"
    assert visited[0].startswith(f"{BASE_URL}/auth/naver?")


def test_redirect_to_auth_failure_raises_provider_qualified_error() -> None:
    def navigate(_url: str) -> None:
        raise OSError("no browser")

    handler, *_ = _handler(navigate=navigate)
    with pytest.raises(RedirectionError) as exc_info:
        handler.redirect_to_auth("google")

    assert str(exc_info.value).startswith("Failed to redirect to google authentication:")
    assert exc_info.value.to_payload()["provider"] == "google"


def test_redirect_to_auth_rejects_bad_base_url() -> None:
    handler, _, storage, visited, _ = _handler(RedirectionConfig(base_url="not-a-url"))
    with pytest.raises(RedirectionError):
        handler.redirect_to_auth("google")
    assert visited == []
    assert storage.get_item(RETURN_URL_KEY) is None


def test_redirect_to_auth_rejects_empty_provider() -> None:
    handler, *_ = _handler()
    with pytest.raises(RedirectionError):
        handler.redirect_to_auth("  ")


# --------------------------------------------------------------------------- #
# handle_auth_return / complete_handoff                                       #
# --------------------------------------------------------------------------- #
def test_handle_auth_return_success() -> None:
    handler, manager, _, visited, clock = _handler()
    result = AuthResult(success=True, timestamp=now_ms(clock), user_id="u1", session_token="t1")

    handler.handle_auth_return(result)

    state = manager.get_state()
    assert state.status == "authenticated"
    assert state.source == "external_app"
    assert state.session_token == "t1"
    assert handler.get_stored_auth_result() == result
    assert _query(visited[0]) == {"success": ["true"], "user_id": ["u1"], "session_token": ["t1"]}


def test_handle_auth_return_failure_is_symmetric() -> None:
    handler, manager, _, visited, clock = _handler()
    result = AuthResult(success=False, timestamp=now_ms(clock), error="access_denied")

    handler.handle_auth_return(result)

    assert manager.get_state().status == "unauthenticated"
    assert handler.get_stored_auth_result() == result
    assert _query(visited[0]) == {"success": ["false"], "error": ["access_denied"]}

    handler.clear_stored_auth_result()
    assert handler.get_stored_auth_result() is None


def test_handle_auth_return_falls_back_when_navigation_fails() -> None:
    calls: list[str] = []

    def navigate(url: str) -> None:
        calls.append(url)
        if len(calls) == 1:
            raise OSError("blocked")

    handler, manager, _, _, clock = _handler(navigate=navigate)
    handler.handle_auth_return(AuthResult(success=True, timestamp=now_ms(clock), user_id="u1"))

    assert len(calls) == 2
    assert _query(calls[1])["success"] == ["false"]
    assert manager.get_state().status == "unauthenticated"
    stored = handler.get_stored_auth_result()
    assert stored.success is False
    assert stored.error.startswith("Failed to process authentication result")


def test_complete_handoff_on_landing_page() -> None:
    handler, manager, storage, visited, _ = _handler()
    handler.redirect_to_auth("google")
    visited.clear()

    result = handler.complete_handoff(
        f"{BASE_URL}/auth/callback/verified?success=true&user_id=u1&session_token=t1"
    )

    assert result.success is True
    assert manager.get_state().user_id == "u1"
    assert storage.get_item(RETURN_URL_KEY) is None
    assert storage.get_item(AUTH_RESULT_KEY) is not None
    assert visited == []


def test_complete_handoff_without_success_flag_keeps_existing_login() -> None:
    handler, manager, storage, _, clock = _handler()
    # the external surface wrote its state into the shared storage first
    other = AuthStateManager(storage, clock=clock, timer=ManualTimer(clock))
    other.set_state(
        AuthState(
            status="authenticated",
            timestamp=now_ms(clock),
            source="external_app",
            user_id="u1",
            session_token="t1",
        )
    )

    result = handler.complete_handoff(handler.build_return_url(BASE_URL))

    assert result.success is True
    assert result.user_id == "u1"
    state = manager.get_state()
    assert state.status == "authenticated"
    assert state.session_token == "t1"
    assert storage.get_item(AUTH_RESULT_KEY) is None


def test_complete_handoff_without_success_flag_and_no_login() -> None:
    handler, manager, storage, *_ = _handler()
    result = handler.complete_handoff(f"{BASE_URL}/auth/callback/verified?t=1&source=external_app")

    assert result.success is False
    assert result.error == "Authentication was not completed"
    assert manager.get_state() is None
    assert storage.get_item(AUTH_RESULT_KEY) is None
