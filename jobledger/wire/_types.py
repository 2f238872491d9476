from typing import Any

from jobledger.wire.codecs.rrc import RequestResponseCodec
from jobledger.wire.triggers.http import HTTPRouteTrigger


# Only HTTP routes with request/response codecs are compiled today.
type Trigger = HTTPRouteTrigger | Any
type Codec = RequestResponseCodec | Any
type Exposure = tuple[Trigger, Codec]
