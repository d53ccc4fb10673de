from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)
from typing import Optional, Dict, List, Any, Tuple
from utils import logger, sanitize, InvalidConfiguration

DEFAULT_SCALE = 1


def coerce_count(count: Any) -> int:
    """Parse a deployment count given as an int or a numeric string"""
    if isinstance(count, bool):
        raise InvalidConfiguration(f"Invalid deployment count: {count!r}")
    if isinstance(count, int):
        return count
    if isinstance(count, float) and count.is_integer():
        return int(count)
    if isinstance(count, str):
        try:
            return int(count.strip())
        except ValueError:
            pass
    raise InvalidConfiguration(f"Invalid deployment count: {count!r}")


def port_number(value: Any) -> Optional[int]:
    """Port as an int, or None when the value is not a whole number"""
    try:
        return coerce_count(value)
    except InvalidConfiguration:
        return None


def port_candidate(record: Any) -> Optional[Dict[str, int]]:
    """Resolve a ports record to a host/container pair, or None if it has no usable port"""
    if not isinstance(record, dict):
        return None
    if record.get("containerPort") is not None:
        container_port = port_number(record["containerPort"])
        if container_port is None:
            return None
        host_port = container_port
        if record.get("hostPort") is not None:
            host_port = port_number(record["hostPort"])
            if host_port is None:
                return None
        return {"hostPort": host_port, "containerPort": container_port}
    if record.get("port") is not None:
        port = port_number(record["port"])
        if port is None:
            return None
        return {"hostPort": port, "containerPort": port}
    return None


def resolve_ports(expose: List[Any], ports: List[Any]) -> Tuple[List[Dict[str, int]], List[Any]]:
    """Split exposed and mapped ports into host/container pairs and unusable entries"""
    candidates = []
    skipped = []
    for value in expose:
        port = port_number(value)
        if port is None:
            skipped.append(value)
        else:
            candidates.append({"hostPort": port, "containerPort": port})
    for record in ports:
        candidate = port_candidate(record)
        if candidate is None:
            skipped.append(record)
        else:
            candidates.append(candidate)
    return candidates, skipped


def _sanitize_if_text(value: Any) -> Any:
    return sanitize(value) if isinstance(value, str) else value


class ServiceDescriptor(BaseModel):
    """Normalized, read-only description of one deployable service.

    Built from a flat attribute mapping such as the one a service file parser
    produces. The name and every link name are sanitized on the way in, and
    missing collections default to empty ones. Other values are stored as
    given. ``scale()`` and ``min_port()`` are recomputed from the stored
    attributes on every call.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    name: Optional[Any] = None
    source: Optional[Any] = None
    command: Optional[Any] = None
    ports: List[Any] = Field(default_factory=list)  # e.g. [{"hostPort": 80, "containerPort": 8080}]
    expose: List[Any] = Field(default_factory=list)
    environment: List[Any] = Field(default_factory=list)
    volumes: List[Any] = Field(default_factory=list)
    links: List[Any] = Field(default_factory=list)  # e.g. [{"name": "db", "alias": "mysql"}]
    deployment: Dict[str, Any] = Field(default_factory=dict)

    @field_validator(
        "ports", "expose", "environment", "volumes", "links", mode="before"
    )
    @classmethod
    def _default_sequence(cls, value):
        if value is None:
            return []
        if isinstance(value, list):
            return [dict(item) if isinstance(item, dict) else item for item in value]
        return value

    @field_validator("deployment", mode="before")
    @classmethod
    def _default_mapping(cls, value):
        if value is None:
            return {}
        return dict(value) if isinstance(value, dict) else value

    @field_validator("name")
    @classmethod
    def _sanitize_name(cls, value):
        return _sanitize_if_text(value)

    @field_validator("links")
    @classmethod
    def _sanitize_links(cls, value):
        links = []
        for link in value:
            if isinstance(link, dict) and "name" in link:
                link = dict(link, name=_sanitize_if_text(link["name"]))
            links.append(link)
        return links

    @model_validator(mode="after")
    def _check_deployment_count(self):
        try:
            self.scale()
        except InvalidConfiguration as e:
            raise ValueError(e.message)
        return self

    @model_validator(mode="after")
    def _report_unusable_ports(self):
        _, skipped = resolve_ports(self.expose, self.ports)
        for entry in skipped:
            logger.warning(
                "Skipping port without a usable container port",
                service=self.name,
                entry=entry,
            )
        return self

    @classmethod
    def from_attrs(cls, attrs: Optional[Dict[str, Any]] = None) -> "ServiceDescriptor":
        """Build a descriptor from a raw attribute mapping.

        Raises:
            InvalidConfiguration: if the deployment count is not a whole number
        """
        attrs = attrs or {}
        try:
            service = cls(**attrs)
        except ValidationError as e:
            errors = "; ".join(
                f"{'.'.join(str(loc) for loc in error['loc']) or 'service'}: {error['msg']}"
                for error in e.errors()
            )
            raise InvalidConfiguration(f"Invalid service '{attrs.get('name')}': {errors}")

        logger.debug(
            "Service descriptor built",
            service=service.name,
            source=service.source,
            links=len(service.links),
        )
        return service

    def scale(self) -> int:
        """Desired replica count, 1 unless the deployment sets a count"""
        count = self.deployment.get("count")
        if count is None:
            return DEFAULT_SCALE
        return coerce_count(count)

    def port_candidates(self) -> List[Dict[str, int]]:
        """Exposed ports followed by mapped ports, as host/container pairs"""
        candidates, _ = resolve_ports(self.expose, self.ports)
        return candidates

    def min_port(self) -> Optional[Dict[str, int]]:
        """Port mapping with the lowest container port, or None without ports.

        On a tie the first candidate wins, exposed ports before mapped ones.
        """
        candidates = self.port_candidates()
        if not candidates:
            return None
        return min(candidates, key=lambda candidate: candidate["containerPort"])

    def to_dict(self) -> Dict[str, Any]:
        """Normalized attributes plus the derived scale and minPort"""
        data = self.model_dump()
        data["scale"] = self.scale()
        data["minPort"] = self.min_port()
        return data


class ServicesRequest(BaseModel):
    services: List[Dict[str, Any]] = []  # raw attribute mappings, one per service
