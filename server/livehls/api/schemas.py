from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from livehls.core.settings import DEFAULT_STREAM_KEY


class StartStreamRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    stream_key: str = Field(default=DEFAULT_STREAM_KEY, alias="streamKey")
    # Pull from a running source instead of the built-in test pattern.
    relay_url: Optional[str] = Field(default=None, alias="relayUrl")
    title: Optional[str] = None
    description: Optional[str] = None
    thumbnail: Optional[str] = None


class StopStreamRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    stream_key: str = Field(alias="streamKey")
