from omnidesk.channels.base import ChannelAdapter
from omnidesk.channels.facebook import FacebookAdapter
from omnidesk.channels.instagram import InstagramAdapter
from omnidesk.channels.web import WebChatAdapter
from omnidesk.channels.whatsapp import WhatsAppAdapter
from omnidesk.domain.enums import Channel

ADAPTERS: dict[Channel, ChannelAdapter] = {
    adapter.channel: adapter
    for adapter in (InstagramAdapter(), FacebookAdapter(), WhatsAppAdapter(), WebChatAdapter())
}


def get_adapter(channel: Channel) -> ChannelAdapter:
    try:
        return ADAPTERS[channel]
    except KeyError as exc:
        raise ValueError(f"No inbound adapter for channel '{channel.value}'") from exc


__all__ = [
    "ADAPTERS",
    "ChannelAdapter",
    "FacebookAdapter",
    "InstagramAdapter",
    "WebChatAdapter",
    "WhatsAppAdapter",
    "get_adapter",
]
