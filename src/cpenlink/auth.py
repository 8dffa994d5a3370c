# MIT License
#
# Copyright (c) 2025 CPen Link Contributors
#
# Permission is hereby granted, free of charge, to any person obtaining a copy
# of this software and associated documentation files (the "Software"), to deal
# in the Software without restriction, including without limitation the rights
# to use, copy, modify, merge, publish, distribute, sublicense, and/or sell
# copies of the Software, and to permit persons to whom the Software is
# furnished to do so, subject to the following conditions:
#
# The above copyright notice and this permission notice shall be included in
# all copies or substantial portions of the Software.
#
# THE SOFTWARE IS PROVIDED "AS IS", WITHOUT WARRANTY OF ANY KIND, EXPRESS OR
# IMPLIED, INCLUDING BUT NOT LIMITED TO THE WARRANTIES OF MERCHANTABILITY,
# FITNESS FOR A PARTICULAR PURPOSE AND NONINFRINGEMENT. IN NO EVENT SHALL THE
# AUTHORS OR COPYRIGHT HOLDERS BE LIABLE FOR ANY CLAIM, DAMAGES OR OTHER
# LIABILITY, WHETHER IN AN ACTION OF CONTRACT, TORT OR OTHERWISE, ARISING FROM,
# OUT OF OR IN CONNECTION WITH THE SOFTWARE OR THE USE OR OTHER DEALINGS IN THE
# SOFTWARE.

"""Bearer credential sent to the storage service."""

import json

from pydantic import BaseModel, ConfigDict, Field


class AuthInfo(BaseModel):
    """
    Pen identity plus a one-time code, serialised into the Authorization header.

    Instances are immutable. A transfer takes a fresh copy for each request
    instead of sharing one mutable credential.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    device_id: str = Field(alias="Id")
    totp: str = Field(alias="Totp")

    def header_value(self) -> str:
        return json.dumps({"Id": self.device_id, "Totp": self.totp}, separators=(",", ":"))

    def headers(self) -> dict:
        return {"Authorization": self.header_value()}

    def __repr__(self):
        # Never print the code itself
        return f"AuthInfo(device_id={self.device_id!r})"
