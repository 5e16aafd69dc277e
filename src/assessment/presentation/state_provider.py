from abc import ABC, abstractmethod
from typing import Any

import streamlit as st

from src.assessment.domain.ports import IRecoveryStore


class IStateProvider(ABC):
    @abstractmethod
    def get(self, key: str, default: Any = None) -> Any:
        pass

    @abstractmethod
    def set(self, key: str, value: Any) -> None:
        pass

    @abstractmethod
    def clear(self) -> None:
        pass


class StreamlitStateProvider(IStateProvider):
    def get(self, key: str, default: Any = None) -> Any:
        return st.session_state.get(key, default)

    def set(self, key: str, value: Any) -> None:
        st.session_state[key] = value

    def clear(self) -> None:
        st.session_state.clear()


class BrowserRecoveryStore(IRecoveryStore):
    """
    Recovery store kept in the browser session, the counterpart of a
    client-side local store. Survives reruns, not a closed tab.
    """

    PREFIX = "recovery::"

    def __init__(self, provider: IStateProvider) -> None:
        self.provider = provider

    def get(self, key: str, default: Any = None) -> Any:
        return self.provider.get(self.PREFIX + key, default)

    def set(self, key: str, value: Any) -> None:
        self.provider.set(self.PREFIX + key, value)
