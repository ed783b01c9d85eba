"""模型可以请求调用的辅助能力：天气、网页搜索、Cloudinary 图片上传与列表。"""
