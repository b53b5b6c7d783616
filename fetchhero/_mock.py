import typing as tp

import httpx

__all__ = ("MockAsyncOrigin",)


class MockAsyncOrigin:
    """
    An origin fetch answering from a queue of prepared responses.

    Queued exceptions are raised instead of being returned. Every request
    received is recorded in `requests`.
    """

    def __init__(self) -> None:
        self.mocked_responses: tp.List[tp.Union[httpx.Response, BaseException]] = []
        self.requests: tp.List[httpx.Request] = []

    @property
    def calls(self) -> int:
        return len(self.requests)

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        mocked = self.mocked_responses.pop(0)
        if isinstance(mocked, BaseException):
            raise mocked

        mocked.request = request
        return mocked

    def add_responses(self, responses: tp.List[tp.Union[httpx.Response, BaseException]]) -> None:
        self.mocked_responses.extend(responses)
