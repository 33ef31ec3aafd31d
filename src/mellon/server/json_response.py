from collections.abc import Mapping

from starlette.responses import JSONResponse

from mellon.errors import ErrorResponse


class UnauthorizedResponse(JSONResponse):
    """401 carrying an ``ErrorResponse`` body and a bearer challenge."""

    def __init__(
        self,
        error: ErrorResponse,
        headers: Mapping[str, str] | None = None,
    ):
        super().__init__(
            content=error,
            status_code=401,
            headers={"WWW-Authenticate": "Bearer", **(headers or {})},
        )

    def render(self, content: ErrorResponse) -> bytes:
        return content.model_dump_json().encode("utf-8")
