# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/namesync/config/models.py

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class ProxmoxConfig(BaseModel):
    """Connection settings for every Proxmox endpoint in the cluster."""

    model_config = ConfigDict(populate_by_name=True)

    host_urls: List[str] = Field(default_factory=list, alias="hostUrls")
    username: Optional[str] = None
    password: Optional[str] = None
    token_id: Optional[str] = Field(default=None, alias="tokenId")
    secret: Optional[str] = None
    insecure: bool = False
    timeout_seconds: float = Field(default=30.0, alias="timeoutSeconds", gt=0)

    @field_validator("host_urls")
    @classmethod
    def _strip_urls(cls, v: List[str]) -> List[str]:
        return [u.strip() for u in v if u and u.strip()]

    @model_validator(mode="after")
    def _check_required(self) -> "ProxmoxConfig":
        if not self.host_urls:
            raise ValueError("at least one Proxmox URL must be provided")
        if not self.has_token_auth and not self.has_password_auth:
            raise ValueError("authentication credentials are required (token or username/password)")
        return self

    @property
    def has_token_auth(self) -> bool:
        return bool(self.token_id and self.secret)

    @property
    def has_password_auth(self) -> bool:
        return bool(self.username and self.password)

    @property
    def uses_token(self) -> bool:
        # token wins when both pairs are present
        return self.has_token_auth


class ControllerSettings(BaseModel):
    """Requeue cadence and task-wait bounds for the node reconciler (seconds)."""

    model_config = ConfigDict(populate_by_name=True)

    control_plane_requeue: float = Field(default=300.0, alias="controlPlaneRequeue", gt=0)
    error_requeue: float = Field(default=120.0, alias="errorRequeue", gt=0)
    not_found_requeue: float = Field(default=600.0, alias="notFoundRequeue", gt=0)
    in_sync_requeue: float = Field(default=1800.0, alias="inSyncRequeue", gt=0)
    renamed_requeue: float = Field(default=300.0, alias="renamedRequeue", gt=0)

    task_interval_seconds: float = Field(default=5.0, alias="taskIntervalSeconds", gt=0)
    task_timeout_seconds: float = Field(default=30.0, alias="taskTimeoutSeconds", gt=0)
    reconcile_timeout_seconds: float = Field(default=120.0, alias="reconcileTimeoutSeconds", gt=0)

    workers: int = Field(default=2, ge=1)
