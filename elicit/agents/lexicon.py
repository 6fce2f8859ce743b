"""Keyword tables used by concept extraction, type classification, and matching."""

import re
from dataclasses import dataclass, field
from typing import Literal

TypeTag = Literal[
    "time", "count", "credential", "lock", "error", "process", "rule", "ui", "general"
]

TYPE_TAGS: tuple[TypeTag, ...] = (
    "time",
    "count",
    "credential",
    "lock",
    "error",
    "process",
    "rule",
    "ui",
    "general",
)

# Question particles, interrogatives and filler words. Matched per token,
# after segmentation, so "会" never eats into "会员".
_STOPWORDS = frozenset(
    {
        "的", "了", "吗", "呢", "吧", "啊", "呀", "么", "嘛", "是", "否", "会",
        "要", "能", "请", "问", "和", "与", "或", "及", "在", "对", "把", "被",
        "有", "没", "就", "都", "也", "还", "这", "那", "个", "一", "下", "后",
        "时", "中", "上", "我", "你", "他", "她", "它", "们", "我们", "你们",
        "什么", "怎么", "怎样", "如何", "多少", "几", "哪些", "哪个", "哪里",
        "是否", "是不是", "有没有", "能否", "可以", "需要", "请问", "一下",
        "一个", "这个", "那个", "具体", "应该", "希望", "想要", "想", "做",
        "a", "an", "and", "are", "as", "at", "be", "by", "can", "do", "does",
        "for", "from", "how", "if", "in", "is", "it", "many", "much", "of",
        "on", "or", "should", "the", "there", "this", "to", "what", "when",
        "which", "who", "will", "with", "would", "you", "your", "we", "our",
    }
)

# Known multi-character terms for longest-match segmentation of CJK runs.
_VOCABULARY = frozenset(
    {
        "密码", "口令", "账号", "账户", "用户", "用户名", "登录", "登陆", "注册",
        "凭证", "令牌", "验证码", "认证", "鉴权", "权限", "角色", "管理员",
        "锁定", "冻结", "禁用", "解锁", "封禁", "停用", "激活",
        "失败", "错误", "异常", "超时", "重试", "告警", "报错",
        "次数", "次", "数量", "个数", "上限", "下限", "最大", "最小", "长度",
        "分钟", "小时", "秒", "天", "周", "时间", "时长", "期限", "有效期", "过期",
        "多久", "多长", "连续", "自动", "手动",
        "流程", "步骤", "审批", "审核", "通知", "邮件", "短信", "提醒", "推送",
        "规则", "策略", "限制", "约束", "必须", "不能", "允许", "禁止", "合规",
        "界面", "页面", "按钮", "显示", "提示", "弹窗", "菜单", "表单",
        "系统", "功能", "模块", "数据", "记录", "日志", "管理", "配置",
        "性能", "安全", "并发", "响应", "可用", "场景", "操作", "特性",
        "复杂度", "字符", "字母", "数字", "特殊", "大写", "小写",
        "会话", "会员", "重置", "找回", "修改", "删除", "新增", "查询", "导出",
    }
)

# Ordered: the first matching rule wins.
_TYPE_RULES: tuple[tuple[TypeTag, str], ...] = (
    ("lock", r"锁定|冻结|禁用|解锁|封禁|停用|\block(ed|out)?\b|\bunlock\b|\bfreez"),
    ("credential", r"密码|口令|凭证|令牌|验证码|登录|登陆|password|credential|token|login"),
    ("error", r"失败|错误|异常|报错|\berror|\bfail|exception"),
    ("time", r"分钟|小时|时长|多久|多长时间|期限|有效期|过期|超时|\d+\s*[秒天周]|minute|hour|second|timeout|expir|duration"),
    ("count", r"次数|多少次|几次|数量|个数|上限|下限|最大|最小|长度|\d+\s*[次个位条]|how many|count|number of|limit"),
    ("process", r"流程|步骤|审批|审核|通知|邮件|短信|提醒|推送|process|workflow|approv|notif"),
    ("rule", r"规则|策略|限制|约束|必须|不能|允许|禁止|合规|policy|rule|must|allow|forbid"),
    ("ui", r"界面|页面|按钮|显示|提示|弹窗|菜单|表单|\bui\b|page|button|screen|display"),
)

_COMPATIBLE: tuple[tuple[TypeTag, TypeTag], ...] = (
    ("time", "lock"),
    ("time", "process"),
    ("time", "rule"),
    ("count", "lock"),
    ("count", "error"),
    ("count", "rule"),
    ("credential", "lock"),
    ("credential", "error"),
    ("credential", "rule"),
    ("lock", "error"),
    ("lock", "rule"),
    ("error", "process"),
    ("process", "rule"),
    ("process", "ui"),
)

_SYNONYMS: tuple[frozenset[str], ...] = (
    frozenset({"锁定", "冻结", "禁用", "封禁", "停用", "lock", "locked", "lockout"}),
    frozenset({"密码", "口令", "password", "passcode"}),
    frozenset({"登录", "登陆", "login", "signin"}),
    frozenset({"账号", "账户", "用户名", "account", "username"}),
    frozenset({"失败", "错误", "failure", "failed", "error"}),
    frozenset({"时长", "时间", "多久", "期限", "duration", "period"}),
    frozenset({"次数", "多少次", "个数", "数量", "count", "times", "attempts"}),
    frozenset({"通知", "提醒", "推送", "notify", "notification", "alert"}),
    frozenset({"界面", "页面", "screen", "page"}),
    frozenset({"规则", "策略", "policy", "rule"}),
)

_CATEGORIES: dict[TypeTag, str] = {
    "time": "performance",
    "count": "business",
    "credential": "security",
    "lock": "security",
    "error": "technical",
    "process": "functional",
    "rule": "business",
    "ui": "ui",
    "general": "functional",
}

_TOPIC_NAMES: dict[TypeTag, str] = {
    "time": "时长与期限",
    "count": "次数与数量",
    "credential": "账号与密码",
    "lock": "锁定策略",
    "error": "失败与异常处理",
    "process": "业务流程",
    "rule": "业务规则",
    "ui": "界面交互",
    "general": "总体需求",
}


@dataclass(frozen=True)
class Lexicon:
    """
    Keyword configuration for rule-based matching.

    Every table is plain data so it can be tuned or replaced in tests without
    touching the matching code.
    """

    stopwords: frozenset[str] = _STOPWORDS
    vocabulary: frozenset[str] = _VOCABULARY
    type_rules: tuple[tuple[TypeTag, str], ...] = _TYPE_RULES
    compatible_pairs: tuple[tuple[TypeTag, TypeTag], ...] = _COMPATIBLE
    synonyms: tuple[frozenset[str], ...] = _SYNONYMS
    categories: dict[TypeTag, str] = field(default_factory=lambda: dict(_CATEGORIES))
    topic_names: dict[TypeTag, str] = field(default_factory=lambda: dict(_TOPIC_NAMES))
    compiled_rules: tuple[tuple[TypeTag, re.Pattern[str]], ...] = field(init=False)

    def __post_init__(self) -> None:
        object.__setattr__(
            self,
            "compiled_rules",
            tuple(
                (tag, re.compile(pattern, flags=re.IGNORECASE))
                for tag, pattern in self.type_rules
            ),
        )

    def synonym_group(self, term: str) -> frozenset[str] | None:
        """
        Return the synonym group containing ``term``, if any.

        Args:
            term (str): The concept to look up.

        Returns:
            frozenset[str] | None: The group, or None when the term has no synonyms.
        """
        for group in self.synonyms:
            if term in group:
                return group
        return None


_DEFAULT: Lexicon | None = None


def default_lexicon() -> Lexicon:
    """
    Return the shared built-in lexicon.

    Returns:
        Lexicon: The default keyword tables.
    """
    global _DEFAULT
    if _DEFAULT is None:
        _DEFAULT = Lexicon()
    return _DEFAULT
