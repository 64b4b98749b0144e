from __future__ import annotations


class FunctionError(Exception):
    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class TemplateError(FunctionError):
    pass


class SerializationError(FunctionError):
    pass


class IdentityMissingError(FunctionError):
    pass


class IdentityConflictError(FunctionError):
    def __init__(self, detail: str, name: str) -> None:
        super().__init__(detail)
        self.name = name


class CardinalityError(FunctionError):
    pass


class InvocationError(FunctionError):
    pass
