class JobFlowError(Exception):
    """Business-rule failure with a stable machine-readable code."""

    kind = "error"

    def __init__(self, code: str, detail: str = ""):
        self.code = code
        self.detail = detail or code
        super().__init__(f"{code}: {self.detail}" if detail else code)


class JobValidationError(JobFlowError):
    kind = "validation"


class JobConflict(JobFlowError):
    kind = "conflict"


class JobPolicyError(JobFlowError):
    kind = "policy"
