"""
Error taxonomy for holder risk analysis
"""


class HolderRiskError(Exception):
    """Base error"""
    pass


class DataUnavailable(HolderRiskError):
    """Holder or label input is missing or malformed"""
    pass


class LookupFailure(HolderRiskError):
    """Label or chain API call failed"""

    def __init__(self, message: str, source: str = "unknown"):
        super().__init__(message)
        self.source = source
