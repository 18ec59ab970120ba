from pydantic import BaseModel, Field
from typing import Optional, List

from .errors import Outcome


class ToolResult(BaseModel):
    args: List[str]
    returncode: Optional[int] = None
    stdout: str = ""
    stderr: str = ""
    outcome: Outcome = Outcome.UNKNOWN

    @property
    def ok(self) -> bool:
        return self.outcome == Outcome.SUCCESS

    def summary(self) -> str:
        return f"{' '.join(self.args)} -> {self.outcome.value} (exit {self.returncode})"


class DiscoveryRecord(BaseModel):
    timestamp: str  # HH:MM:SS.mmm as printed by dns-sd
    action: str
    flags: int
    interface: int
    domain: str
    service_type: str
    instance_name: str
    line_no: int = 0


class ReleaseInfo(BaseModel):
    tag: str
    download_url: str

    @property
    def version(self) -> str:
        return self.tag[1:] if self.tag.lower().startswith("v") else self.tag


class PodcastJob(BaseModel):
    config_path: str
    output_path: str
    log_level: str = "info"
    transcode: bool = True
    write_feed: bool = True
    episode_cap: int = Field(default=5, ge=0)
    show_urls: List[str] = []
