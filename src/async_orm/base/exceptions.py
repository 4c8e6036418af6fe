from typing import Iterable, Optional


class SchemaDefinitionError(Exception):
    """Exception raised when a model or field declaration is invalid."""

    def __init__(self, message: str = "Invalid model or field definition."):
        super().__init__(message)


class QueryBuildError(Exception):
    """Base class for errors raised while building or compiling a query."""

    def __init__(self, model_name: str, message: str = "Invalid query."):
        self.model_name = model_name
        super().__init__(f"{model_name} Model QueryBuilder Error: {message}")


class FieldNotFoundError(QueryBuildError, LookupError):
    """Error raised when a relation path names a field that does not exist."""

    def __init__(
        self,
        model_name: str,
        field_name: str,
        choices: Optional[Iterable[str]] = None,
        message: Optional[str] = None,
    ):
        self.field_name = field_name
        self.choices = list(choices or [])
        if message is None:
            message = f"field '{field_name}' doesn't exist in {model_name} model."
        if self.choices:
            message += f" choices are: {', '.join(self.choices)}"
        super().__init__(model_name, message)


class JoinsNotAllowedError(QueryBuildError):
    """Error raised when a relation path with joins is used where none are allowed."""

    def __init__(self, model_name: str, field_name: str, method: str):
        self.field_name = field_name
        super().__init__(
            model_name,
            f"'{method}' query does not allow joins (field: {field_name})",
        )


class QueryTypeConflictError(QueryBuildError):
    """Error raised when a builder is asked to become two kinds of query."""


class ArgumentTypeError(QueryBuildError, TypeError):
    """Error raised when a builder method receives an argument of the wrong type."""


class SubqueryKindError(QueryBuildError):
    """Error raised when a non-SELECT builder is used as a filter subquery."""


class ExecutionError(Exception):
    """Exception raised when the executor fails to run a compiled query."""

    def __init__(self, message: str = "Query execution failed."):
        super().__init__(message)


class ConstraintViolationError(ExecutionError):
    """Exception raised when a statement violates a table constraint."""

    def __init__(self, message: str, constraint_name: Optional[str] = None):
        self.constraint_name = constraint_name
        super().__init__(message)
