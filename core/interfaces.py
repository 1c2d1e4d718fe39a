"""Abstract base classes for dependency injection."""

from abc import ABC, abstractmethod


class AIProvider(ABC):
    """Abstract base class for the drill generation and scoring service."""

    @abstractmethod
    def generate_drill(self, mode: str, tier: int, rating: int,
                       forced_kind: str | None = None) -> tuple[dict, int]:
        """Generate a drill. Returns (drill_dict, generation_time_ms).

        drill_dict carries source_text, reference_answer and vocab_hints.
        forced_kind names the boss the drill is generated under, if any.
        """
        pass

    @abstractmethod
    def score_answer(self, user_answer: str, reference_answer: str, source_text: str,
                     rating: int, mode: str, is_reversed: bool = False) -> tuple[dict, int]:
        """Score an answer. Returns (score_dict, scoring_time_ms).

        score_dict carries score (0-10), feedback, and optionally
        improved_version and segments.
        """
        pass


class Storage(ABC):
    """Abstract base class for profile and config storage."""

    @abstractmethod
    def load_config(self) -> dict:
        """Load configuration. Returns config dict."""
        pass

    @abstractmethod
    def load_state(self, user_id: str = "default") -> dict | None:
        """Load the profile document for a user. Returns dict or None if not found."""
        pass

    @abstractmethod
    def save_state(self, state: dict, user_id: str = "default") -> None:
        """Replace the profile document for a user."""
        pass

    @abstractmethod
    def list_users(self) -> list[str]:
        """List user ids that have a stored profile."""
        pass

    @abstractmethod
    def user_exists(self, user_id: str) -> bool:
        pass

    @abstractmethod
    def load_api_stats(self, provider_name: str) -> dict | None:
        """Load API usage stats for a provider. Returns stats dict or None."""
        pass

    @abstractmethod
    def save_api_stats(self, provider_name: str, stats: dict) -> None:
        """Save API usage stats for a provider."""
        pass
