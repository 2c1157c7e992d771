from datetime import datetime
from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel

SignalSeverity = Literal["critical", "high", "medium", "low"]


class TimingSignal(BaseModel):
    type: str
    severity: SignalSeverity
    penalty: int = 0
    description: str
    details: Optional[str] = None
    holiday: Optional[str] = None
    timing: Optional[str] = None
    day: Optional[str] = None
    hour: Optional[int] = None
    count: Optional[int] = None
    period: Optional[str] = None


class BehavioralReport(BaseModel):
    signals: List[TimingSignal] = []
    penalty: int = 0
    risk_score: int = 0
    update_date: Optional[datetime] = None
    summary: str = "No concerning timing patterns detected."


class PatternSignal(BaseModel):
    type: str
    severity: SignalSeverity
    description: str
    implication: str


class HistoryReport(BaseModel):
    signals: List[PatternSignal] = []
    version_analyses: Dict[str, BehavioralReport] = {}
    overall_risk: Literal["critical", "high", "medium", "low", "none"] = "none"
    pattern_summary: str


class TimingVerdict(BaseModel):
    is_suspicious: bool
    score: int
    context: Dict[str, Any]
