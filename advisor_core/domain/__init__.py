"""领域层模型与协议。

包含：
- models: ChatMessage / ChatRequest / ChatResult / ModelInvocation / StreamFrame。
- conversation: Message、Conversation、ConversationLog 及 MessageCache 抽象。
- evaluation: 评分维度、等级阈值与聚合结果模型。
- exceptions: 业务异常类型定义。
"""
