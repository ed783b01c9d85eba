"""领域层模型与协议。

包含：
- models: Turn / Part / UserInput 以及 Gemini JSON 编解码。
- outcomes: LLM Gateway 的查询结果联合类型。
- history: HistoryStore 抽象。
- exceptions: 业务异常类型定义。
"""
