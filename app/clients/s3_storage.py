from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError


class S3StorageClient:
    """Binary asset storage.

    Objects are addressed by key. Without credentials the client keeps
    objects in process memory, which is what the tests and local runs use.
    """

    def __init__(
        self,
        bucket: str,
        access_key: str | None,
        secret_key: str | None,
        endpoint_url: str | None = None,
        region_name: str | None = None,
        public_url: str | None = None,
        addressing_style: str | None = None,
        presign_expiry: int = 3600,
    ) -> None:
        self.bucket = (bucket or "").strip()
        self.access_key = (access_key or "").strip()
        self.secret_key = (secret_key or "").strip()
        self.endpoint_url = (endpoint_url or "").rstrip("/") or None
        self.region_name = (region_name or "").strip() or None
        self.public_url_base = (public_url or "").rstrip("/")
        self.presign_expiry = presign_expiry
        self._memory: Dict[str, bytes] = {}
        self._client = None
        if self.is_configured():
            session = boto3.session.Session(
                aws_access_key_id=self.access_key,
                aws_secret_access_key=self.secret_key,
                region_name=self.region_name,
            )
            config = BotoConfig(
                s3={"addressing_style": (addressing_style or "virtual").lower()}
            )
            self._client = session.client("s3", endpoint_url=self.endpoint_url, config=config)

    def is_configured(self) -> bool:
        return bool(self.bucket and self.access_key and self.secret_key)

    def upload_bytes(
        self,
        path: str,
        content: bytes,
        content_type: str = "application/octet-stream",
    ) -> str:
        """Stores the object and returns its key."""
        key = self._normalize_path(path)
        if not key:
            raise ValueError("object key is required")
        if not self.is_configured() or self._client is None:
            self._memory[key] = content
            return key
        try:
            self._client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=content,
                ContentType=content_type,
            )
        except (BotoCoreError, ClientError) as exc:  # pragma: no cover - AWS error surface
            raise ValueError(f"S3 upload failed: {exc}") from exc
        return key

    def list_files(self, prefix: str | None = None) -> List[dict[str, Any]]:
        key_prefix = self._normalize_path(prefix) if prefix else ""
        if not self.is_configured() or self._client is None:
            return self._list_memory(key_prefix)
        contents: List[dict[str, Any]] = []
        kwargs: Dict[str, Any] = {"Bucket": self.bucket}
        if key_prefix:
            kwargs["Prefix"] = key_prefix
        continuation_token: str | None = None
        while True:
            if continuation_token:
                kwargs["ContinuationToken"] = continuation_token
            try:
                response = self._client.list_objects_v2(**kwargs)
            except (BotoCoreError, ClientError) as exc:  # pragma: no cover
                raise ValueError(f"S3 list failed: {exc}") from exc
            for obj in response.get("Contents", []):
                key = obj.get("Key")
                if not key:
                    continue
                contents.append(
                    {
                        "key": key,
                        "size": obj.get("Size"),
                        "last_modified": obj.get("LastModified"),
                        "url": self.public_url(key),
                    }
                )
            if not response.get("IsTruncated"):
                break
            continuation_token = response.get("NextContinuationToken")
        return contents

    def download_bytes(self, path: str) -> bytes:
        key = self._normalize_path(path)
        if not self.is_configured() or self._client is None:
            if key not in self._memory:
                raise ValueError("object not found in memory storage")
            return self._memory[key]
        try:
            response = self._client.get_object(Bucket=self.bucket, Key=key)
            body = response.get("Body")
            if body is None:
                return b""
            return body.read()
        except (BotoCoreError, ClientError) as exc:  # pragma: no cover
            raise ValueError(f"S3 download failed: {exc}") from exc

    def exists(self, path: str) -> bool:
        key = self._normalize_path(path)
        if not key:
            return False
        if not self.is_configured() or self._client is None:
            return key in self._memory
        try:
            self._client.head_object(Bucket=self.bucket, Key=key)
        except ClientError as exc:
            code = str(exc.response.get("Error", {}).get("Code", ""))
            if code in ("404", "NoSuchKey", "NotFound"):
                return False
            raise ValueError(f"S3 head failed: {exc}") from exc
        except BotoCoreError as exc:  # pragma: no cover
            raise ValueError(f"S3 head failed: {exc}") from exc
        return True

    def resolve_url(self, ref: str | None) -> str | None:
        """Turns a stored reference into a playable URL, or None when nothing is stored under it."""
        if not ref or not ref.strip():
            return None
        candidate = ref.strip()
        if candidate.lower().startswith(("http://", "https://")):
            return candidate
        if not self.exists(candidate):
            return None
        key = self._normalize_path(candidate)
        if self.public_url_base or self._client is None:
            return self.public_url(key)
        try:
            return self._client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket, "Key": key},
                ExpiresIn=self.presign_expiry,
            )
        except (BotoCoreError, ClientError) as exc:  # pragma: no cover
            raise ValueError(f"S3 presign failed: {exc}") from exc

    def public_url(self, path: str) -> str:
        clean = self._normalize_path(path)
        if self.public_url_base:
            return f"{self.public_url_base}/{clean}"
        if self.endpoint_url:
            return f"{self.endpoint_url}/{self.bucket}/{clean}"
        return f"/{self.bucket}/{clean}"

    def _list_memory(self, prefix: str) -> List[dict[str, Any]]:
        items: List[dict[str, Any]] = []
        for key, data in self._memory.items():
            if prefix and not key.startswith(prefix):
                continue
            items.append(
                {
                    "key": key,
                    "size": len(data),
                    "last_modified": datetime.utcnow(),
                    "url": self.public_url(key),
                }
            )
        return items

    def _normalize_path(self, path: str | None) -> str:
        if not path:
            return ""
        return "/".join(part for part in path.strip().split("/") if part)
