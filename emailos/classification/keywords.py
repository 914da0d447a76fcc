"""
Keyword lists and sender rules used by the signal detector.

Data only. Lists are bilingual (English / Traditional Chinese) and matched as
case-insensitive substrings of ``subject + " " + snippet``; order matters
wherever only the first match of a category is kept.
"""

from __future__ import annotations

from typing import NamedTuple

from emailos.storage.models import UrgencyLevel, Zone

# ============================================================================
# POSITIVE SIGNALS
# ============================================================================

URGENCY_KEYWORDS: dict[UrgencyLevel, tuple[str, ...]] = {
    UrgencyLevel.HIGH: (
        "urgent", "asap", "immediately", "deadline", "critical", "emergency",
        "time-sensitive", "action required",
        "緊急", "立即", "逾期", "限期", "安全性快訊",
    ),
    UrgencyLevel.MEDIUM: (
        "follow up", "reminder", "update", "question", "meeting", "schedule",
        "review", "feedback",
        "提醒", "更新", "會議", "排程", "回覆", "確認",
        "申請", "審核", "變更",
    ),
    UrgencyLevel.LOW: ("notification", "automated", "通知"),
}

ACTION_REQUIRED_KEYWORDS: tuple[str, ...] = (
    "簽核", "需要簽核", "action required", "approve", "approval needed",
    "屆期", "expire", "expir",
    "安全性快訊", "security alert",
    "rfq", "request for quot", "quotation", "inquiry", "enquiry",
    "報價", "詢價", "見積", "請報價", "quote request",
)

# Seed typing: business-opportunity vocabulary (RFQ-adjacent)
OPPORTUNITY_KEYWORDS: tuple[str, ...] = (
    "opportunity", "proposal", "partnership", "collaboration", "interested",
    "offer", "rfq", "quotation", "inquiry", "enquiry", "quote",
    "報價", "詢價", "見積",
)

# ============================================================================
# NEGATIVE SIGNALS
# ============================================================================

NEWSLETTER_KEYWORDS: tuple[str, ...] = (
    "newsletter", "digest", "unsubscribe", "no-reply", "noreply",
    "promotion", "edm", "subscribe",
    "電子報", "快訊", "促銷", "優惠", "免費", "講座", "研討會",
    "活動", "活動推薦", "限時", "折扣", "獨家", "立即搶購",
    "推薦活動", "熱門推薦",
    "應徵履歷", "調查表", "問卷", "教育訓練需求",
    "補助申請", "survey",
)

SEASONAL_GREETING_KEYWORDS: tuple[str, ...] = (
    "新年快樂", "春節", "祝福", "恭喜發財", "新春", "開工大吉",
    "馬到成功", "馬年", "大吉", "迎春", "賀年", "佳節",
    "happy new year", "season's greetings", "merry christmas",
    "感恩", "耶誕",
)

AUTO_NOTIFICATION_KEYWORDS: tuple[str, ...] = (
    "交易結果通知", "結果通知", "成功通知", "自動發送", "請勿直接回信",
    "系統自動", "do not reply", "automated message",
    "電子發票通知", "對帳單", "月報", "成效", "績效報告",
    "monthly report", "your monthly", "performance",
    "驗證碼", "verification code", "otp",
    "費用通知", "繳款單", "帳單",
    "新訊", "重要通知", "水費", "繳費",
)

MARKETING_KEYWORDS: tuple[str, ...] = (
    "拓展事業", "獨特之處", "升級", "全新", "新品", "方案",
    "了解更多", "learn more", "discover", "introducing",
    "快速編輯", "井然有序", "輕鬆辦到",
    "逆襲", "狂飆", "業績", "免費工具",
)

KNOWN_NEWSLETTER_DOMAINS: tuple[str, ...] = (
    "accuvally.com", "mail.adobe.com", "edmapac.trendmicro.com",
    "service.alibaba.com", "mymkc.com", "edm.taitra.org.tw",
)

# ============================================================================
# SENDER RULES
# ============================================================================


class PrecisionRule(NamedTuple):
    """Sender-domain rule, optionally narrowed by a subject substring.

    With ``subject_contains`` set, a match forces ``zone``. Without it the rule
    only marks the sender as VIP.
    """

    domain_contains: str
    subject_contains: str | None
    zone: Zone | None

    @property
    def label(self) -> str:
        return f"{self.domain_contains}+{self.subject_contains}"


# First matching rule wins; a subject rule that doesn't match is skipped.
VIP_PRECISION_RULES: tuple[PrecisionRule, ...] = (
    PrecisionRule("gov.tw", None, None),
    PrecisionRule("gov", None, None),
    PrecisionRule("tcb-bank.com.tw", "待放行", Zone.GREEN),
    PrecisionRule("tcb-bank.com.tw", "交易結果", Zone.GREEN),
    PrecisionRule("tcb-bank.com.tw", "對帳單", Zone.YELLOW),
    PrecisionRule("tcb-bank.com.tw", "EDI", Zone.GREEN),
    PrecisionRule("tcb-bank.com.tw", "財經", Zone.GREEN),
    PrecisionRule("tcb-bank.com.tw", "經濟", Zone.GREEN),
    PrecisionRule("tcb-bank.com.tw", "權益", Zone.GREEN),
    PrecisionRule("google.com", "安全性", Zone.RED),
    PrecisionRule("google.com", "security", Zone.RED),
    PrecisionRule("google.com", "Action Advised", Zone.YELLOW),
    PrecisionRule("google.com", "Action Required", Zone.YELLOW),
    PrecisionRule("google.com", "成效", Zone.GREEN),
    PrecisionRule("google.com", "拓展", Zone.GREEN),
    PrecisionRule("google.com", "獨特", Zone.GREEN),
    PrecisionRule("google.com", "welcome", Zone.GREEN),
    PrecisionRule("femascloud.com", "簽核", Zone.RED),
    PrecisionRule("femascloud.com", "稽催", Zone.RED),
    PrecisionRule("firstbank.com", "對帳單", Zone.YELLOW),
    PrecisionRule("cht.com.tw", "發票", Zone.YELLOW),
    PrecisionRule("cht.com.tw", "費用", Zone.YELLOW),
    PrecisionRule("1111.com.tw", None, None),
    PrecisionRule("ms.104.com.tw", None, Zone.GREEN),
    PrecisionRule("104.com.tw", "驗證碼", Zone.GREEN),
    PrecisionRule("water.gov.tw", None, Zone.YELLOW),
    PrecisionRule("nhi.gov.tw", "新訊", Zone.YELLOW),
    PrecisionRule("nhi.gov.tw", "調整通知", Zone.YELLOW),
    PrecisionRule("google.com", "提醒", Zone.YELLOW),
    PrecisionRule("google.com", "Merchant", Zone.YELLOW),
)

VIP_DOMAIN_PATTERNS: tuple[str, ...] = ("gov", "gov.tw")
