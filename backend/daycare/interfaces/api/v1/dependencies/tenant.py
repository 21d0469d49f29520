from fastapi import Header, HTTPException, status


def _parse_id_header(value: str, header_name: str) -> int:
    try:
        return int(value)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail=f"{header_name} must be an integer"
        ) from exc


def get_current_tenant_id(x_tenant_id: str | None = Header(default=None, alias="X-Tenant-Id")) -> int:
    if x_tenant_id is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing X-Tenant-Id header")
    return _parse_id_header(x_tenant_id, "X-Tenant-Id")


def get_optional_center_id(x_center_id: str | None = Header(default=None, alias="X-Center-Id")) -> int | None:
    if x_center_id is None:
        return None
    return _parse_id_header(x_center_id, "X-Center-Id")


def get_current_center_id(x_center_id: str | None = Header(default=None, alias="X-Center-Id")) -> int:
    if x_center_id is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing X-Center-Id header")
    return _parse_id_header(x_center_id, "X-Center-Id")
