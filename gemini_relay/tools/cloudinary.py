"""Cloudinary 图片上传与列表能力。

上传使用签名上传接口：签名 = sha1(按 key 排序的 "k=v&..." 参数串 + api_secret)。
列表使用 Admin API，HTTP Basic 认证（api_key / api_secret）。
需要上传的图片来自 CapabilityContext.media，即原始用户 Turn 附带的图片。
"""

import hashlib
import time
from typing import Any, Dict, Optional

import httpx

from gemini_relay.domain.exceptions import CapabilityError
from .definitions import CapabilityContext, CapabilityDeclaration, CapabilityFunc, CapabilityParam


API_BASE = "https://api.cloudinary.com/v1_1"
MAX_LISTED_IMAGES = 20

UPLOAD_DECLARATION = CapabilityDeclaration(
    name="uploadImageToCloudinary",
    description=(
        "Upload the image the user attached to this message to Cloudinary and return its public URL."
    ),
    params={
        "folder": CapabilityParam(
            name="folder",
            description="Optional destination folder",
            required=False,
        ),
        "public_id": CapabilityParam(
            name="public_id",
            description="Optional public id (file name without extension)",
            required=False,
        ),
    },
)

LIST_DECLARATION = CapabilityDeclaration(
    name="listImagesInCloudinary",
    description="List recently uploaded images in Cloudinary, optionally inside one folder.",
    params={
        "folder": CapabilityParam(
            name="folder",
            description="Optional folder to list",
            required=False,
        ),
    },
)


def sign_params(params: Dict[str, Any], api_secret: str) -> str:
    to_sign = "&".join(f"{k}={params[k]}" for k in sorted(params) if params[k] not in (None, ""))
    return hashlib.sha1(f"{to_sign}{api_secret}".encode("utf-8")).hexdigest()


def _read_json(resp: httpx.Response, action: str) -> Dict[str, Any]:
    try:
        data = resp.json()
    except ValueError:
        raise CapabilityError(f"Cloudinary {action} returned an unreadable answer")
    if not isinstance(data, dict):
        raise CapabilityError(f"Cloudinary {action} returned an unreadable answer")
    return data


def _missing_config(cfg) -> Optional[str]:
    if not (cfg.cloudinary_cloud_name and cfg.cloudinary_api_key and cfg.cloudinary_api_secret):
        return "Cloudinary is not configured on the server."
    return None


def make_upload_capability(cfg) -> CapabilityFunc:
    def _run(args: Dict[str, Any], context: CapabilityContext) -> Dict[str, Any]:
        missing = _missing_config(cfg)
        if missing:
            return {"error": missing}
        if context.media is None:
            return {"error": "No image was attached to the message, nothing to upload."}
        params: Dict[str, Any] = {
            "timestamp": int(time.time()),
            "folder": str(args.get("folder") or cfg.cloudinary_default_folder),
        }
        if args.get("public_id"):
            params["public_id"] = str(args["public_id"])
        form = dict(params)
        form["signature"] = sign_params(params, cfg.cloudinary_api_secret)
        form["api_key"] = cfg.cloudinary_api_key
        form["file"] = f"data:{context.media.mime_type};base64,{context.media.data}"
        try:
            with httpx.Client(timeout=cfg.http_timeout, trust_env=False) as client:
                resp = client.post(f"{API_BASE}/{cfg.cloudinary_cloud_name}/image/upload", data=form)
        except httpx.RequestError as e:
            raise CapabilityError(f"Cloudinary unreachable: {e}")
        if resp.status_code >= 400:
            raise CapabilityError(f"Cloudinary upload failed with status {resp.status_code}: {resp.text[:200]}")
        data = _read_json(resp, "upload")
        return {
            "url": data.get("secure_url") or data.get("url"),
            "public_id": data.get("public_id"),
            "format": data.get("format"),
            "bytes": data.get("bytes"),
        }

    return _run


def make_list_capability(cfg) -> CapabilityFunc:
    def _run(args: Dict[str, Any], context: CapabilityContext) -> Dict[str, Any]:
        missing = _missing_config(cfg)
        if missing:
            return {"error": missing}
        folder = str(args.get("folder") or "").strip("/")
        params: Dict[str, Any] = {"max_results": MAX_LISTED_IMAGES}
        if folder:
            params["prefix"] = f"{folder}/"
        try:
            with httpx.Client(timeout=cfg.http_timeout, trust_env=False) as client:
                resp = client.get(
                    f"{API_BASE}/{cfg.cloudinary_cloud_name}/resources/image/upload",
                    params=params,
                    auth=(cfg.cloudinary_api_key, cfg.cloudinary_api_secret),
                )
        except httpx.RequestError as e:
            raise CapabilityError(f"Cloudinary unreachable: {e}")
        if resp.status_code >= 400:
            raise CapabilityError(f"Cloudinary listing failed with status {resp.status_code}")
        resources = _read_json(resp, "listing").get("resources") or []
        return {
            "folder": folder or None,
            "images": [
                {
                    "public_id": r.get("public_id"),
                    "url": r.get("secure_url") or r.get("url"),
                    "created_at": r.get("created_at"),
                }
                for r in resources
            ],
        }

    return _run
