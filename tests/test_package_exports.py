"""Tests for lazily resolved package exports."""

from __future__ import annotations

import unittest

import note_chat


class PackageExportTests(unittest.TestCase):
    """Validate the public names exposed by note_chat."""

    def test_core_exports_resolve(self) -> None:
        from note_chat.conversation import ConversationManager
        from note_chat.message_store import MessageStore

        self.assertIs(note_chat.ConversationManager, ConversationManager)
        self.assertIs(note_chat.MessageStore, MessageStore)
        self.assertTrue(issubclass(note_chat.ConfigurationError, note_chat.NoteChatError))
        self.assertTrue(issubclass(note_chat.ProviderError, RuntimeError))

    def test_every_name_in_all_resolves(self) -> None:
        for name in note_chat.__all__:
            with self.subTest(name=name):
                self.assertIsNotNone(getattr(note_chat, name))

    def test_unknown_attribute(self) -> None:
        with self.assertRaises(AttributeError):
            note_chat.does_not_exist  # noqa: B018


if __name__ == "__main__":
    unittest.main()
