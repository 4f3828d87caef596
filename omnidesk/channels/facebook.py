from omnidesk.channels.base import MessengerStyleAdapter
from omnidesk.domain.enums import Channel


class FacebookAdapter(MessengerStyleAdapter):
    channel = Channel.FACEBOOK
    expected_object = "page"
