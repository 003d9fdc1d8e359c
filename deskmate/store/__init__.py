"""Observable, independently persisted application state."""

from deskmate.store.base import BaseStore, StateChange
from deskmate.store.chat_store import INCOGNITO_MESSAGE_ID, ChatStore, PolicyProvider
from deskmate.store.config_store import ConfigStore
from deskmate.store.registry import StoreRegistry
from deskmate.store.ui_store import UIStore

__all__ = [
    "INCOGNITO_MESSAGE_ID",
    "BaseStore",
    "ChatStore",
    "ConfigStore",
    "PolicyProvider",
    "StateChange",
    "StoreRegistry",
    "UIStore",
]
