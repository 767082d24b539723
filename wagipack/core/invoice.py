"""Invoice 数据模型

Invoice 是展开的产物：一个内容寻址的包描述，由 parcel（文件）和 group
（parcel 分组）组成。同一模型也用于表示预取的外部包。

序列化布局 (to_dict):

    package_id: weather/1.2.4
    description: ...
    parcel:
      - label: {name, sha256, mediaType, size, feature, annotations}
        conditions: {memberOf: [...], requires: [...]}
    group:
      - name: out/fake.wasm-files
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from wagipack.core.exceptions import ValidationError

# parcel 实现了哪个 export（外部引用按此匹配 handler_id）
HANDLER_ID_ANNOTATION = "wagi_handler_id"
# 仅引用不上传的内容（来自外部包）
DO_NOT_STAGE_ANNOTATION = "do_not_stage"

WAGI_FEATURE = "wagi"

FeatureMap = dict[str, dict[str, str]]


def wagi_feature(route: str | None = None, *, is_asset_file: bool = False) -> FeatureMap:
    """构造 WAGI 路由特性 {"wagi": {"route": ..., "file": "true"|"false"}}"""
    values: dict[str, str] = {}
    if route is not None:
        values["route"] = route
    values["file"] = "true" if is_asset_file else "false"
    return {WAGI_FEATURE: values}


@dataclass(frozen=True, order=True)
class PackageId:
    """包标识 name/version，name 本身可以含 '/'"""

    name: str
    version: str

    @classmethod
    def parse(cls, text: str) -> PackageId:
        name, sep, version = text.strip().rpartition("/")
        if not sep or not name or not version:
            raise ValidationError(f"无效的包标识 '{text}'，格式应为 name/version")
        return cls(name=name, version=version)

    def __str__(self) -> str:
        return f"{self.name}/{self.version}"


@dataclass
class Label:
    """parcel 的内容描述"""

    name: str
    sha256: str
    media_type: str
    size: int
    feature: FeatureMap | None = None
    annotations: dict[str, str] | None = None

    def annotation(self, key: str) -> str | None:
        return (self.annotations or {}).get(key)

    def has_annotation(self, key: str) -> bool:
        return key in (self.annotations or {})

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "name": self.name,
            "sha256": self.sha256,
            "mediaType": self.media_type,
            "size": self.size,
        }
        if self.feature:
            data["feature"] = {k: dict(v) for k, v in self.feature.items()}
        if self.annotations:
            data["annotations"] = dict(self.annotations)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Label:
        if not isinstance(data, dict):
            raise ValidationError(f"无效的 parcel label: {data!r}", details=["label"])
        try:
            name = str(data["name"])
            sha256 = str(data["sha256"])
            size = int(data.get("size", 0))
        except (KeyError, TypeError, ValueError) as e:
            raise ValidationError(
                f"无效的 parcel label: {data!r} ({e})", details=["label"],
            ) from e
        where = f"label {name}"
        return cls(
            name=name,
            sha256=sha256,
            media_type=str(data.get("mediaType", "application/octet-stream")),
            size=size,
            feature=_feature_map(data.get("feature"), f"{where} feature"),
            annotations=_str_map(data.get("annotations"), f"{where} annotations"),
        )


@dataclass
class Condition:
    """parcel 与 group 的关系: 属于哪些 group / 需要哪些 group"""

    member_of: list[str] | None = None
    requires: list[str] | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.member_of is not None:
            data["memberOf"] = list(self.member_of)
        if self.requires is not None:
            data["requires"] = list(self.requires)
        return data


@dataclass
class Parcel:
    label: Label
    conditions: Condition | None = None

    @property
    def handler_id(self) -> str | None:
        return self.label.annotation(HANDLER_ID_ANNOTATION)

    def requires_groups(self) -> list[str]:
        if self.conditions is None:
            return []
        return list(self.conditions.requires or [])

    def member_groups(self) -> list[str]:
        if self.conditions is None:
            return []
        return list(self.conditions.member_of or [])

    def is_member_of(self, group: str) -> bool:
        return group in self.member_groups()

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"label": self.label.to_dict()}
        if self.conditions is not None:
            cond = self.conditions.to_dict()
            if cond:
                data["conditions"] = cond
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Parcel:
        if not isinstance(data, dict) or "label" not in data:
            raise ValidationError(f"无效的 parcel: {data!r}")
        cond = data.get("conditions")
        conditions = None
        if cond:
            if not isinstance(cond, dict):
                raise ValidationError(
                    f"无效的 parcel conditions: {cond!r}", details=["conditions"],
                )
            conditions = Condition(
                member_of=_str_list(cond.get("memberOf"), "conditions.memberOf"),
                requires=_str_list(cond.get("requires"), "conditions.requires"),
            )
        return cls(label=Label.from_dict(data["label"]), conditions=conditions)


@dataclass
class Group:
    name: str

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name}


@dataclass
class Invoice:
    """包描述"""

    package_id: PackageId
    description: str | None = None
    authors: list[str] | None = None
    annotations: dict[str, str] | None = None
    parcels: list[Parcel] = field(default_factory=list)
    groups: list[Group] = field(default_factory=list)

    def parcels_in(self, group: str) -> list[Parcel]:
        """属于指定 group 的全部 parcel，保持 invoice 中的顺序"""
        return [p for p in self.parcels if p.is_member_of(group)]

    def parcel_named(self, name: str) -> Parcel | None:
        return next((p for p in self.parcels if p.label.name == name), None)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"package_id": str(self.package_id)}
        if self.description is not None:
            data["description"] = self.description
        if self.authors is not None:
            data["authors"] = list(self.authors)
        if self.annotations is not None:
            data["annotations"] = dict(self.annotations)
        data["parcel"] = [p.to_dict() for p in self.parcels]
        data["group"] = [g.to_dict() for g in self.groups]
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Invoice:
        """从序列化布局还原

        除 package_id 外，也接受 Bindle 风格的 bindle: {name, version} 头。
        """
        if not isinstance(data, dict):
            raise ValidationError(f"invoice 必须是映射，实际为 {type(data).__name__}")

        header = data.get("bindle") or {}
        if not isinstance(header, dict):
            raise ValidationError(
                f"invoice 的 bindle 头必须是映射: {header!r}", details=["bindle"],
            )
        if "package_id" in data:
            package_id = PackageId.parse(str(data["package_id"]))
        elif header.get("name") and header.get("version"):
            package_id = PackageId(str(header["name"]), str(header["version"]))
        else:
            raise ValidationError("invoice 缺少 package_id")

        groups = []
        for g in data.get("group") or []:
            if not isinstance(g, dict) or "name" not in g:
                raise ValidationError(f"无效的 group: {g!r}")
            groups.append(Group(name=str(g["name"])))

        parcels = data.get("parcel") or []
        if not isinstance(parcels, list):
            raise ValidationError(f"invoice 的 parcel 必须是列表: {parcels!r}", details=["parcel"])

        return cls(
            package_id=package_id,
            description=data.get("description", header.get("description")),
            authors=_str_list(data.get("authors", header.get("authors")), "authors"),
            annotations=_str_map(data.get("annotations"), "annotations"),
            parcels=[Parcel.from_dict(p) for p in parcels],
            groups=groups,
        )


# =========================================================================
# 字段形状校验
# =========================================================================


def _str_list(value: Any, field_name: str) -> list[str] | None:
    if value is None:
        return None
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ValidationError(
            f"{field_name} 必须是字符串列表，实际为 {value!r}", details=[field_name],
        )
    return list(value)


def _str_map(value: Any, field_name: str) -> dict[str, str] | None:
    if value is None:
        return None
    if not isinstance(value, dict) or not all(
        isinstance(k, str) and isinstance(v, str) for k, v in value.items()
    ):
        raise ValidationError(
            f"{field_name} 必须是 字符串 -> 字符串 的映射，实际为 {value!r}",
            details=[field_name],
        )
    return dict(value)


def _feature_map(value: Any, field_name: str) -> FeatureMap | None:
    if value is None:
        return None
    if not isinstance(value, dict):
        raise ValidationError(
            f"{field_name} 必须是映射，实际为 {value!r}", details=[field_name],
        )
    return {
        str(k): _str_map(v, f"{field_name}.{k}") or {} for k, v in value.items()
    }
