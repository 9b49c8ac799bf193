"""
Tests for NotificationManager.
"""

import logging

from cellbook.notifications import NotificationManager


class TestNotificationManager:
    """Test cases for user notifications."""

    def test_add_error_records_and_emits(self):
        manager = NotificationManager()
        received = []
        manager.on_did_add_notification(received.append)

        notification = manager.add_error("Failed to save notebook", detail="disk full")

        assert manager.notifications == [notification]
        assert received == [notification]
        assert notification.level == "error"
        assert notification.detail == "disk full"

    def test_levels_are_logged(self, caplog):
        manager = NotificationManager()
        with caplog.at_level(logging.INFO, logger="cellbook.notifications"):
            manager.add_warning("careful")
            manager.add_info("Kernel restarted")

        levels = [record.levelno for record in caplog.records]
        assert levels == [logging.WARNING, logging.INFO]
        assert "Kernel restarted" in caplog.text

    def test_clear(self):
        manager = NotificationManager()
        manager.add_info("x")
        manager.clear()
        assert manager.notifications == []
