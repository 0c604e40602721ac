# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Request signers for Tencent Cloud services.

Two independent strategies share the ``RequestSigner`` protocol:

- ``Tc3Signer``: TC3-HMAC-SHA256 for the cloud API gateway
- ``CosSigner``: COS V5 HMAC-SHA1 for object storage
"""

from cdnmirror.signing.base import Credential, RequestSigner, SignableRequest
from cdnmirror.signing.cos import CosSigner
from cdnmirror.signing.tc3 import Tc3Signer


__all__ = [
    "CosSigner",
    "Credential",
    "RequestSigner",
    "SignableRequest",
    "Tc3Signer",
]
