"""Tests for session status derivation."""

import pytest

from counterlink.state import (
    ActivationState,
    LinkFacts,
    SessionState,
    derive_session_state,
    state_for_activation,
)


def facts(supported=True, paired=True, installed=True, reachable=True, error=None):
    return LinkFacts(
        supported=supported,
        paired=paired,
        installed=installed,
        reachable=reachable,
        error=error,
    )


class TestDeriveSessionState:
    """Tests for the status precedence."""

    @pytest.mark.parametrize(
        "link, expected",
        [
            (facts(), SessionState.CONNECTED),
            (facts(reachable=False), SessionState.NOT_REACHABLE),
            (facts(installed=False), SessionState.NOT_INSTALLED),
            (facts(installed=False, reachable=False), SessionState.NOT_INSTALLED),
            (facts(paired=False), SessionState.NOT_PAIRED),
            (facts(paired=False, installed=False, reachable=False), SessionState.NOT_PAIRED),
            (facts(supported=False), SessionState.NOT_SUPPORTED),
            (facts(supported=False, paired=False), SessionState.NOT_SUPPORTED),
            (facts(error="boom"), SessionState.ERROR),
            (facts(supported=False, error="boom"), SessionState.ERROR),
        ],
    )
    def test_precedence(self, link, expected):
        assert derive_session_state(link) is expected

    def test_exception_as_error(self):
        """Any recorded error wins over every other fact."""
        assert derive_session_state(facts(error=RuntimeError("x"))) is SessionState.ERROR


class TestStateForActivation:
    """Tests for mapping activation outcomes."""

    def test_activated_derives(self):
        assert state_for_activation(ActivationState.ACTIVATED, facts()) is SessionState.CONNECTED
        assert (
            state_for_activation(ActivationState.ACTIVATED, facts(paired=False))
            is SessionState.NOT_PAIRED
        )

    def test_inactive(self):
        """Inactive is reported as not reachable regardless of facts."""
        assert state_for_activation(ActivationState.INACTIVE, facts()) is SessionState.NOT_REACHABLE

    def test_not_activated(self):
        """Activation still in progress stays connecting."""
        assert (
            state_for_activation(ActivationState.NOT_ACTIVATED, facts())
            is SessionState.CONNECTING
        )

    def test_error(self):
        assert (
            state_for_activation(ActivationState.ACTIVATED, facts(error="boom"))
            is SessionState.ERROR
        )


class TestStatusKeys:
    """Tests for the externally visible status keys."""

    def test_keys(self):
        assert [s.status_key for s in SessionState] == [
            "not_supported",
            "connecting",
            "not_paired",
            "not_installed",
            "not_reachable",
            "connected",
            "error",
        ]
