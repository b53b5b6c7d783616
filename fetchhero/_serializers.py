import base64
import json
import pickle
import typing as tp

from ._exceptions import StoreError
from ._headers import Headers
from ._models import BypassDescriptor, CacheEntry, ResponseSnapshot

__all__ = ("PickleSerializer", "JSONSerializer", "BaseSerializer")


class BaseSerializer:
    def dumps(self, entry: CacheEntry) -> tp.Union[str, bytes]:
        raise NotImplementedError()

    def loads(self, data: tp.Union[str, bytes]) -> CacheEntry:
        raise NotImplementedError()

    @property
    def is_binary(self) -> bool:
        raise NotImplementedError()


class PickleSerializer(BaseSerializer):
    """
    A simple pickle-based serializer.
    """

    def dumps(self, entry: CacheEntry) -> tp.Union[str, bytes]:
        """
        Dumps a cache entry.

        :param entry: The stored response, its policy and bypass descriptor
        :type entry: CacheEntry
        :return: Serialized entry
        :rtype: tp.Union[str, bytes]
        """
        return pickle.dumps(entry)

    def loads(self, data: tp.Union[str, bytes]) -> CacheEntry:
        assert isinstance(data, bytes)
        try:
            entry = pickle.loads(data)
        except (pickle.UnpicklingError, EOFError, AttributeError, ImportError, ValueError) as exc:
            raise StoreError("Could not deserialize the cache entry") from exc

        if not isinstance(entry, CacheEntry):
            raise StoreError(f"Expected a cache entry, got {type(entry).__name__!r}")
        return entry

    @property
    def is_binary(self) -> bool:
        return True


class JSONSerializer(BaseSerializer):
    """A simple json-based serializer."""

    def dumps(self, entry: CacheEntry) -> tp.Union[str, bytes]:
        """
        Dumps a cache entry.

        The body is base64 encoded, headers keep every value of a repeated name.

        :param entry: The stored response, its policy and bypass descriptor
        :type entry: CacheEntry
        :return: Serialized entry
        :rtype: tp.Union[str, bytes]
        """
        response = entry.response
        response_dict = {
            "url": response.url,
            "status": response.status,
            "status_text": response.status_text,
            "headers": response.headers.to_dict(),
            "body": base64.b64encode(response.body).decode("ascii"),
        }

        bypass_dict = None
        if entry.bypass is not None:
            bypass_dict = {"ttl_ms": entry.bypass.ttl_ms, "stored_at_ms": entry.bypass.stored_at_ms}

        full_json = {
            "policy": entry.policy,
            "response": response_dict,
            "bypass": bypass_dict,
        }

        return json.dumps(full_json, indent=4)

    def loads(self, data: tp.Union[str, bytes]) -> CacheEntry:
        """
        Loads a cache entry from serialized data.

        :param data: Serialized data
        :type data: tp.Union[str, bytes]
        :return: The stored entry
        :rtype: CacheEntry
        """
        try:
            full_json = json.loads(data)
            response_dict = full_json["response"]
            bypass_dict = full_json["bypass"]

            response = ResponseSnapshot(
                url=response_dict["url"],
                status=response_dict["status"],
                status_text=response_dict["status_text"],
                headers=Headers(response_dict["headers"]),
                body=base64.b64decode(response_dict["body"].encode("ascii")),
            )

            bypass = None
            if bypass_dict is not None:
                bypass = BypassDescriptor(ttl_ms=bypass_dict["ttl_ms"], stored_at_ms=bypass_dict["stored_at_ms"])

            return CacheEntry(policy=full_json["policy"], response=response, bypass=bypass)
        except (ValueError, KeyError, TypeError) as exc:
            raise StoreError("Could not deserialize the cache entry") from exc

    @property
    def is_binary(self) -> bool:
        return False
