# features.py - User-facing features (Alerts & Notifications)

import time

from plyer import notification

import configure_setting as config


# ============================================================================
# DESKTOP NOTIFIER (OS notification sink)
# ============================================================================
class DesktopNotifier:
    """Shows alerts as OS notifications via plyer"""

    def __init__(self, title=config.ALERT_TITLE, timeout=config.ALERT_TIMEOUT):
        self.title = title
        self.timeout = timeout

    def send(self, message):
        notification.notify(
            title=self.title,
            message=message,
            timeout=self.timeout
        )


# ============================================================================
# ALERT MANAGER (Rate-limited notifications without spam)
# ============================================================================
class AlertManager:
    """
    Forwards posture alerts to a notification sink, at most once per interval.

    All messages share one cooldown: a "too far" alert suppresses a
    "leaning forward" alert that arrives a second later.
    """

    def __init__(self, interval, sink=None, clock=time.time):
        """
        Args:
            interval: Minimum seconds between forwarded alerts
            sink: Object with send(message), defaults to DesktopNotifier
            clock: Time source, replaced in tests
        """
        self.interval = interval
        self.sink = sink if sink is not None else DesktopNotifier()
        self.clock = clock
        self.last_sent = None       # Timestamp of last forwarded alert
        self.sent_count = 0
        self.suppressed_count = 0

    def notify(self, message):
        """
        Forward message unless still cooling down. Never raises.

        Args:
            message: Alert text

        Returns:
            bool: True if the message reached the sink
        """
        now = self.clock()
        if self.last_sent is not None and now - self.last_sent < self.interval:
            self.suppressed_count += 1
            return False

        try:
            self.sink.send(message)
        except Exception as e:
            print(f"⚠️  Notification failed: {e}")
            return False

        self.last_sent = now
        self.sent_count += 1
        print(f"🔔 Alert sent (#{self.sent_count}): {message}")
        return True

    def get_stats(self):
        """Get alert statistics"""
        return {
            'total_alerts': self.sent_count,
            'suppressed': self.suppressed_count,
            'last_sent': self.last_sent
        }
