# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_fda_regintel

"""Exception hierarchy for the regulatory-intelligence engine."""


class RegIntelError(Exception):
    """Base class for all engine errors."""


class AcquisitionError(RegIntelError):
    """Remote dataset could not be fetched."""


class SourceConnectionError(AcquisitionError):
    """Network failure that survived every retry attempt."""


class SourceSchemaError(AcquisitionError):
    """The remote resource is missing or does not have the expected shape."""


class ParseError(RegIntelError):
    """A mandatory source file produced no usable rows or has an unknown layout."""


class BuildError(RegIntelError):
    """Store construction failed; the partially built generation was discarded."""


class BuildCancelledError(BuildError):
    """The build was abandoned because the process is shutting down."""


class ValidationError(RegIntelError):
    """A caller supplied a missing or invalid parameter."""


class StoreNotReadyError(RegIntelError):
    """No generation has been activated yet."""
