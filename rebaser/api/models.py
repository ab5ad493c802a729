"""Pydantic models for API requests and responses."""

from typing import List, Optional
from pydantic import BaseModel, Field
from enum import Enum
from datetime import datetime


class JobStatusEnum(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class TargetTypeEnum(str, Enum):
    SQLSERVER = "sqlserver"


# Request Models
class ConnectionTestRequest(BaseModel):
    connection_string: str


class ReplicationSettingsModel(BaseModel):
    include_schema: bool = True
    include_data: bool = True


class TargetCreate(BaseModel):
    connection_string: str
    target_type: TargetTypeEnum = TargetTypeEnum.SQLSERVER
    overwrite_existing: bool = False
    backup_before: bool = False
    create_new_database: bool = True


class ReplicationCreate(BaseModel):
    source_connection_string: str
    target: TargetCreate
    scripts: List[str] = Field(default_factory=list)
    settings: ReplicationSettingsModel = Field(default_factory=ReplicationSettingsModel)


# Response Models
class ServerInfo(BaseModel):
    product_name: str
    product_version: str
    database_name: str


class ConnectionTestResponse(BaseModel):
    success: bool
    message: str
    server_info: Optional[ServerInfo] = None
    tables: List[str] = Field(default_factory=list)


class ReplicationStartResponse(BaseModel):
    job_id: str
    message: str


class JobResponse(BaseModel):
    job_id: str
    status: JobStatusEnum
    progress: int
    message: str
    start_time: datetime
    end_time: Optional[datetime] = None
    error: Optional[str] = None
    config_id: Optional[str] = None
    config_name: Optional[str] = None
    database_name: Optional[str] = None


class JobListResponse(BaseModel):
    jobs: List[JobResponse]
    total: int
