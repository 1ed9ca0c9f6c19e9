"""Source-side record models for each supported platform."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional


# Supabase

@dataclass
class SupabaseUser:
    """A row from Supabase's auth.users table."""
    id: str
    email: str
    encrypted_password: str  # bcrypt hash
    email_confirmed_at: Optional[datetime] = None  # set = verified
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    is_anonymous: bool = False


@dataclass
class SupabaseIdentity:
    """An OAuth identity from Supabase's auth.identities table."""
    user_id: str
    provider: str
    identity_data: Dict[str, Any] = field(default_factory=dict)  # sub, email, name, full_name
    created_at: Optional[datetime] = None


@dataclass
class RLSPolicy:
    """An existing row-level-security policy read from pg_catalog."""
    policy_name: str
    table_name: str
    schema_name: str
    command: str  # SELECT, INSERT, UPDATE, DELETE, ALL
    permissive: bool = True
    using_expr: str = ""
    check_expr: str = ""


@dataclass
class ColumnInfo:
    """A single column of a source table."""
    name: str
    data_type: str  # information_schema type name, e.g. "character varying"
    is_nullable: bool = True
    default_value: str = ""
    ordinal_position: int = 0


@dataclass
class ForeignKeyInfo:
    """A single-column foreign key constraint."""
    constraint_name: str
    column_name: str
    ref_table: str
    ref_column: str


@dataclass
class TableInfo:
    """Schema and size of a source table."""
    name: str
    columns: List[ColumnInfo] = field(default_factory=list)
    primary_key: str = ""  # empty when composite or missing
    foreign_keys: List[ForeignKeyInfo] = field(default_factory=list)
    row_count: int = 0


@dataclass
class ViewInfo:
    """A source view and its SELECT definition."""
    name: str
    definition: str


@dataclass
class StorageBucket:
    """A bucket from Supabase's storage.buckets table."""
    id: str
    name: str
    public: bool = False


@dataclass
class StorageObject:
    """A file from Supabase's storage.objects table."""
    id: str
    bucket_id: str
    name: str
    size: int = 0
    mime_type: str = "application/octet-stream"
    created_at: Optional[datetime] = None


# Firebase

@dataclass
class ProviderInfo:
    """An identity provider linked to a Firebase user."""
    provider_id: str  # "google.com", "github.com", "password", "phone"
    raw_id: str = ""
    email: str = ""
    display_name: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProviderInfo":
        return cls(
            provider_id=data.get("providerId", ""),
            raw_id=data.get("rawId", ""),
            email=data.get("email", ""),
            display_name=data.get("displayName", ""),
        )


@dataclass
class FirebaseUser:
    """A user entry from `firebase auth:export`."""
    local_id: str
    email: str = ""
    password_hash: str = ""  # base64
    salt: str = ""  # base64
    email_verified: bool = False
    display_name: str = ""
    provider_info: List[ProviderInfo] = field(default_factory=list)
    created_at: str = ""  # millisecond epoch string
    last_login_at: str = ""
    disabled: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FirebaseUser":
        return cls(
            local_id=data.get("localId", ""),
            email=data.get("email", "") or "",
            password_hash=data.get("passwordHash", "") or "",
            salt=data.get("salt", "") or "",
            email_verified=bool(data.get("emailVerified", False)),
            display_name=data.get("displayName", "") or "",
            provider_info=[ProviderInfo.from_dict(p) for p in data.get("providerUserInfo") or []],
            created_at=str(data.get("createdAt", "") or ""),
            last_login_at=str(data.get("lastLoginAt", "") or ""),
            disabled=bool(data.get("disabled", False)),
        )


@dataclass
class FirebaseHashConfig:
    """Project-level scrypt parameters from the auth export."""
    algorithm: str = "SCRYPT"
    base64_signer_key: str = ""
    base64_salt_separator: str = ""
    rounds: int = 8
    mem_cost: int = 14

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FirebaseHashConfig":
        return cls(
            algorithm=data.get("algorithm", "SCRYPT"),
            base64_signer_key=data.get("base64_signer_key", ""),
            base64_salt_separator=data.get("base64_salt_separator", ""),
            rounds=int(data.get("rounds", 8)),
            mem_cost=int(data.get("mem_cost", 14)),
        )


@dataclass
class FirestoreDocument:
    """A document from a Firestore collection export."""
    id: str
    fields: Dict[str, Any] = field(default_factory=dict)


@dataclass
class FirestoreCollection:
    """A named Firestore collection and its documents."""
    name: str
    documents: List[FirestoreDocument] = field(default_factory=list)


@dataclass
class RTDBNode:
    """A top-level Realtime Database node; each child becomes a row."""
    name: str
    children: Dict[str, Any] = field(default_factory=dict)


@dataclass
class StorageFileInfo:
    """A file discovered in a storage export directory."""
    bucket: str
    path: str  # relative to the bucket directory
    full_path: str
    size: int = 0


# PocketBase

@dataclass
class PBField:
    """A field in a PocketBase collection schema."""
    name: str
    type: str  # text, number, bool, email, url, editor, date, select, json, file, relation
    id: str = ""
    system: bool = False
    required: bool = False
    unique: bool = False
    max_select: float = 0  # newer PocketBase keeps this at top level
    collection_id: str = ""
    options: Dict[str, Any] = field(default_factory=dict)  # older PocketBase option bag

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PBField":
        return cls(
            name=data.get("name", ""),
            type=data.get("type", "text"),
            id=data.get("id", ""),
            system=bool(data.get("system", False)),
            required=bool(data.get("required", False)),
            unique=bool(data.get("unique", False)),
            max_select=float(data.get("maxSelect") or 0),
            collection_id=data.get("collectionId", "") or "",
            options=data.get("options") or {},
        )

    @property
    def max_selections(self) -> float:
        if self.max_select > 0:
            return self.max_select
        value = self.options.get("maxSelect")
        if isinstance(value, (int, float)):
            return float(value)
        return 0


@dataclass
class PBCollection:
    """A PocketBase collection from the _collections table."""
    id: str
    name: str
    type: str  # "base", "view", "auth"
    system: bool = False
    schema: List[PBField] = field(default_factory=list)
    indexes: List[str] = field(default_factory=list)

    # API rules: None = locked (admin-only), "" = open to all
    list_rule: Optional[str] = None
    view_rule: Optional[str] = None
    create_rule: Optional[str] = None
    update_rule: Optional[str] = None
    delete_rule: Optional[str] = None

    options: Dict[str, Any] = field(default_factory=dict)
    view_query: str = ""

    @property
    def is_data_table(self) -> bool:
        return not self.system and self.type not in ("auth", "view")

    @property
    def has_file_fields(self) -> bool:
        return any(f.type == "file" for f in self.schema)


@dataclass
class PBRecord:
    """A generic record from any PocketBase collection."""
    id: str
    data: Dict[str, Any] = field(default_factory=dict)
