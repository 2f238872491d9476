"""
Notify — outbound fire-and-report collaborators.

    from jobledger import notify as N

    notifier: N.Notifier = N.TelegramNotifier(settings.telegram)
    rooms: N.RoomOpener = N.RealtimeRooms(settings.realtime)
"""

from jobledger.notify._types import Payload, Notifier, RoomOpener
from jobledger.notify._http import post_json
from jobledger.notify._telegram import TelegramNotifier, format_message
from jobledger.notify._realtime import RealtimeRooms

__all__ = (
    "Payload",
    "Notifier",
    "RoomOpener",
    "post_json",
    "TelegramNotifier",
    "format_message",
    "RealtimeRooms",
)
