# src/bucketflow/models.py
"""
Data model for objects moving through the transfer engine.

`TransferObject` is a plain mutable record: listing creates it, metadata and
content fetches hydrate it in place, and uploads read from it. The access
control types translate to and from the request/response shapes botocore
uses for `PutObjectAcl` and `GetObjectAcl`.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional


@dataclass
class Grantee:
    """
    The receiver of a permission grant.

    Attributes:
        type (str): `CanonicalUser`, `AmazonCustomerByEmail` or `Group`.
        id (str, optional): Canonical user id.
        display_name (str, optional): Display name of the grantee.
        email_address (str, optional): E-mail address of the grantee.
        uri (str, optional): URI of a predefined group.
    """

    type: str
    id: Optional[str] = None
    display_name: Optional[str] = None
    email_address: Optional[str] = None
    uri: Optional[str] = None

    def to_boto(self) -> Dict[str, str]:
        grantee: Dict[str, str] = {"Type": self.type}
        for name, value in (
            ("ID", self.id),
            ("DisplayName", self.display_name),
            ("EmailAddress", self.email_address),
            ("URI", self.uri),
        ):
            if value is not None:
                grantee[name] = value
        return grantee

    @classmethod
    def from_boto(cls, data: Mapping[str, Any]) -> "Grantee":
        return cls(
            type=data["Type"],
            id=data.get("ID"),
            display_name=data.get("DisplayName"),
            email_address=data.get("EmailAddress"),
            uri=data.get("URI"),
        )


@dataclass
class Grant:
    """A single permission (e.g. `READ`, `FULL_CONTROL`) given to a grantee."""

    grantee: Grantee
    permission: str

    def to_boto(self) -> Dict[str, Any]:
        return {"Grantee": self.grantee.to_boto(), "Permission": self.permission}

    @classmethod
    def from_boto(cls, data: Mapping[str, Any]) -> "Grant":
        return cls(
            grantee=Grantee.from_boto(data["Grantee"]),
            permission=data["Permission"],
        )


@dataclass
class Owner:
    id: Optional[str] = None
    display_name: Optional[str] = None

    def to_boto(self) -> Dict[str, str]:
        owner: Dict[str, str] = {}
        if self.id is not None:
            owner["ID"] = self.id
        if self.display_name is not None:
            owner["DisplayName"] = self.display_name
        return owner


@dataclass
class AccessControlPolicy:
    """A structured list of grants, applied with a separate ACL request."""

    grants: List[Grant] = field(default_factory=list)
    owner: Optional[Owner] = None

    def to_boto(self) -> Dict[str, Any]:
        policy: Dict[str, Any] = {"Grants": [g.to_boto() for g in self.grants]}
        if self.owner is not None:
            policy["Owner"] = self.owner.to_boto()
        return policy

    @classmethod
    def from_boto(cls, data: Mapping[str, Any]) -> "AccessControlPolicy":
        owner_data: Optional[Mapping[str, Any]] = data.get("Owner")
        return cls(
            grants=[Grant.from_boto(g) for g in data.get("Grants", [])],
            owner=(
                Owner(id=owner_data.get("ID"), display_name=owner_data.get("DisplayName"))
                if owner_data
                else None
            ),
        )


@dataclass
class TransferObject:
    """
    One object version in the store, with its metadata and optional body.

    Attributes:
        key (str): The object key, already percent-decoded.
        version_id (str, optional): Version to operate on; None means latest.
        body (bytes, optional): Object content, set only by a content fetch.
        size (int, optional): Size in bytes reported by a listing or head.
        content_type (str, optional): The `Content-Type` header.
        content_disposition (str, optional): The `Content-Disposition` header.
        content_encoding (str, optional): The `Content-Encoding` header.
        content_language (str, optional): The `Content-Language` header.
        cache_control (str, optional): The `Cache-Control` header.
        e_tag (str, optional): The store's content fingerprint.
        last_modified (datetime, optional): Last modification time.
        storage_class (str, optional): Storage class of the object.
        server_side_encryption (str, optional): Server-side encryption
            algorithm, e.g. `AES256` or `aws:kms`.
        is_latest (bool, optional): Whether this is the latest version.
        metadata (Dict[str, str]): User-defined metadata.
        acl (str, optional): Canned ACL sent with the upload.
        access_control_policy (AccessControlPolicy, optional): Grants applied
            after the upload.
    """

    key: str
    version_id: Optional[str] = None
    body: Optional[bytes] = field(default=None, repr=False)
    size: Optional[int] = None
    content_type: Optional[str] = None
    content_disposition: Optional[str] = None
    content_encoding: Optional[str] = None
    content_language: Optional[str] = None
    cache_control: Optional[str] = None
    e_tag: Optional[str] = None
    last_modified: Optional[datetime] = None
    storage_class: Optional[str] = None
    server_side_encryption: Optional[str] = None
    is_latest: Optional[bool] = None
    metadata: Dict[str, str] = field(default_factory=dict)
    acl: Optional[str] = None
    access_control_policy: Optional[AccessControlPolicy] = None

    @property
    def content_length(self) -> Optional[int]:
        """Length of the fetched body, else the size the store reported."""
        return len(self.body) if self.body is not None else self.size

    def apply_metadata(self, response: Mapping[str, Any]) -> None:
        """
        Overwrite every content metadata field from a head/get response.

        Fields missing from the response are reset to None; nothing is merged.

        Args:
            response (Mapping[str, Any]): A `HeadObject` or `GetObject` response.
        """
        self.content_type = response.get("ContentType")
        self.content_disposition = response.get("ContentDisposition")
        self.content_encoding = response.get("ContentEncoding")
        self.content_language = response.get("ContentLanguage")
        self.cache_control = response.get("CacheControl")
        self.e_tag = response.get("ETag")
        self.last_modified = response.get("LastModified")
        self.size = response.get("ContentLength")
        self.storage_class = response.get("StorageClass")
        self.server_side_encryption = response.get("ServerSideEncryption")
        self.metadata = dict(response.get("Metadata") or {})

    def to_dict(self) -> Dict[str, Any]:
        """
        Render the identity and metadata as a JSON-friendly dictionary.

        The body is never included.

        Returns:
            Dict[str, Any]: The serializable representation.
        """
        return {
            "key": self.key,
            "version_id": self.version_id,
            "content_length": self.content_length,
            "content_type": self.content_type,
            "content_disposition": self.content_disposition,
            "content_encoding": self.content_encoding,
            "content_language": self.content_language,
            "cache_control": self.cache_control,
            "e_tag": self.e_tag,
            "mtime": self.last_modified.isoformat() if self.last_modified else None,
            "storage_class": self.storage_class,
            "server_side_encryption": self.server_side_encryption,
            "metadata": dict(self.metadata),
            "acl": self.acl,
            "access_control_policy": (
                self.access_control_policy.to_boto()
                if self.access_control_policy
                else None
            ),
        }
