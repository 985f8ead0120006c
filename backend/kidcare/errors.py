"""
도메인 예외 분류.

서비스 계층은 아래 예외만 던지고, main.py 의 핸들러가 HTTP 상태 코드로 바꿉니다.
NotFound 와 PermissionDenied 는 레코드 단위 조회에서 같은 모양으로 보이도록
서비스 쪽에서 NotFoundError 로 통일합니다.
"""


class KidcareError(Exception):
    code = "error"
    status_code = 500

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class PermissionDeniedError(KidcareError):
    code = "permission_denied"
    status_code = 403


class NotFoundError(KidcareError):
    code = "not_found"
    status_code = 404


class ConflictError(KidcareError):
    code = "conflict"
    status_code = 409


class LimitExceededError(ConflictError):
    code = "limit_exceeded"


class InvalidArgumentError(KidcareError):
    code = "invalid_argument"
    status_code = 400


class InvalidRoleError(InvalidArgumentError):
    code = "invalid_role"


class InvalidTransitionError(InvalidArgumentError):
    code = "invalid_transition"


class FatalError(KidcareError):
    code = "fatal"
    status_code = 500


class StorageError(FatalError):
    code = "storage_error"
