from fastapi import HTTPException, status

# Domain errors raised by the service layer. They are HTTPExceptions so the
# routes can let them through untouched; Celery tasks catch them by class.


class TestNotFound(HTTPException):
    __test__ = False # not a pytest class

    def __init__(self, test_id: int):
        self.test_id = test_id
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=f"A/B test {test_id} not found.")


class TestNotRunning(HTTPException):
    __test__ = False

    def __init__(self, test_id: int, current_status: str):
        self.test_id = test_id
        self.current_status = current_status
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"A/B test {test_id} is not running (status: {current_status})."
        )


class SessionNotFound(HTTPException):
    def __init__(self, test_id: int, session_id: str):
        self.test_id = test_id
        self.session_id = session_id
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Session {session_id} has no assignment in A/B test {test_id}."
        )


class InvalidTrafficSplit(HTTPException):
    def __init__(self, reason: str):
        super().__init__(status_code=422, detail=f"Invalid traffic split: {reason}")


class InvalidStatusTransition(HTTPException):
    def __init__(self, test_id: int, current_status: str, action: str):
        self.current_status = current_status
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Cannot {action} A/B test {test_id} while it is {current_status}."
        )


class TestDeleteNotAllowed(HTTPException):
    __test__ = False

    def __init__(self, test_id: int, current_status: str):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Cannot delete A/B test {test_id} while it is {current_status}."
        )


class AssignmentFailed(HTTPException):
    def __init__(self, test_id: int):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=f"A/B test {test_id} unable to create assignment.")
