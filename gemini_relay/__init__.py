"""Gemini Relay 顶层包。

把 Web 聊天与 Telegram 机器人的消息转发给 Gemini，
并在模型请求时代为执行能力（天气、网页搜索、Cloudinary 图片上传与列表），
再把结果交还给模型，直到得到最终回答。
"""

__version__ = "0.1.0"
