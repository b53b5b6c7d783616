__all__ = (
    "FetchHeroError",
    "InvalidInputError",
    "StoreError",
)


class FetchHeroError(Exception): ...


class InvalidInputError(FetchHeroError, ValueError): ...


class StoreError(FetchHeroError): ...
