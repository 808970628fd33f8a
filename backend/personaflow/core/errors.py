"""信号引擎异常定义"""


class SignalError(Exception):
    """信号引擎异常基类"""


class UnknownSignalType(SignalError, ValueError):
    """信号类型不在目录中，事件不能入库"""

    def __init__(self, event_type: str):
        self.event_type = event_type
        super().__init__(f"Unknown signal type: {event_type!r}")


class InvalidRatingValue(SignalError, ValueError):
    """评分超出 1-5 范围"""

    def __init__(self, value):
        self.value = value
        super().__init__(f"Invalid rating value: {value!r} (expected integer 1-5)")


class InvalidExclusionType(SignalError, ValueError):
    """不支持的排除类型"""

    def __init__(self, exclusion_type: str):
        self.exclusion_type = exclusion_type
        super().__init__(f"Invalid exclusion type: {exclusion_type!r}")


class ExclusionNotFound(SignalError, LookupError):
    """排除规则不存在或不属于该访客"""

    def __init__(self, exclusion_id: int, visitor_hash: str):
        self.exclusion_id = exclusion_id
        self.visitor_hash = visitor_hash
        super().__init__(f"Exclusion {exclusion_id} not found for visitor {visitor_hash}")


class TrackerUnavailable(SignalError, RuntimeError):
    """上游 tracker 不可用，信号生产方应静默跳过"""
