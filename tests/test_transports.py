# =====================================
import json
import httpx
import pytest

from matchrelay.services.transports import RaspiUploadClient, TelegramDocumentClient


@pytest.fixture
def export_file(tmp_path):
	path = tmp_path / "result_7.json"
	path.write_text('{"eventId": 7}', encoding="utf-8")
	return path


def telegram_client(handler) -> TelegramDocumentClient:
	return TelegramDocumentClient(api_url="https://telegram.test", transport=httpx.MockTransport(handler))


def raspi_client(handler) -> RaspiUploadClient:
	return RaspiUploadClient(
		base_url="http://scoreboard.local:8000/",
		api_key=" secret ",
		transport=httpx.MockTransport(handler),
	)


def test_telegram_send_success(export_file):
	"""Test sendDocument posts the file as multipart to the bot endpoint"""
	seen = {}

	def handler(request: httpx.Request) -> httpx.Response:
		seen["url"] = str(request.url)
		seen["body"] = request.read()
		return httpx.Response(200, json={"ok": True, "result": {"message_id": 1}})

	result = telegram_client(handler).send("123:abc", "-100500", export_file)

	assert result.success is True
	assert seen["url"] == "https://telegram.test/bot123:abc/sendDocument"
	assert b'name="chat_id"' in seen["body"]
	assert b"-100500" in seen["body"]
	assert b'filename="result_7.json"' in seen["body"]


def test_telegram_ok_false_is_failure(export_file):
	"""Test HTTP 200 with ok=false counts as a failed delivery"""
	def handler(request):
		return httpx.Response(200, json={"ok": False, "description": "Bad Request: chat not found"})

	result = telegram_client(handler).send("123:abc", "-1", export_file)

	assert result.success is False
	assert "chat not found" in result.error_message
	assert "file=result_7.json" in result.error_message


def test_telegram_http_error_is_failure(export_file):
	def handler(request):
		return httpx.Response(502, text="Bad Gateway")

	result = telegram_client(handler).send("123:abc", "-1", export_file)

	assert result.success is False
	assert "HTTP 502" in result.error_message


def test_telegram_network_error_is_failure(export_file):
	def handler(request):
		raise httpx.ConnectError("connection refused", request=request)

	result = telegram_client(handler).send("123:abc", "-1", export_file)

	assert result.success is False
	assert "ConnectError" in result.error_message


def test_telegram_missing_file(tmp_path):
	def handler(request):
		raise AssertionError("no request expected")

	result = telegram_client(handler).send("123:abc", "-1", tmp_path / "gone.json")

	assert result.success is False
	assert result.error_message.startswith("File does not exist")


def test_raspi_upload_success():
	"""Test the finished game is posted verbatim with the API key header"""
	seen = {}
	body = json.dumps({"gameId": "g1", "season": "2025"})

	def handler(request: httpx.Request) -> httpx.Response:
		seen["url"] = str(request.url)
		seen["headers"] = request.headers
		seen["body"] = request.read().decode("utf-8")
		return httpx.Response(200, json={"status": "ok", "file": "2025/g1.json"})

	result = raspi_client(handler).upload(body)

	assert result.success is True
	assert seen["url"] == "http://scoreboard.local:8000/api/upload-finished-game"
	assert seen["headers"]["X-Api-Key"] == "secret"
	assert seen["headers"]["Content-Type"] == "application/json; charset=utf-8"
	assert seen["body"] == body


@pytest.mark.parametrize("response, expected", [
	(httpx.Response(500, text="boom"), "HTTP 500: boom"),
	(httpx.Response(200, text=""), "Empty server response"),
	(httpx.Response(200, text="<html>"), "Malformed JSON response: <html>"),
	(httpx.Response(200, json={"status": "error", "file": None}), "Server responded status='error', file='None'"),
])
def test_raspi_upload_failures(response, expected):
	result = raspi_client(lambda request: response).upload("{}")

	assert result.success is False
	assert result.error_message == expected


def test_raspi_timeout_is_failure():
	def handler(request):
		raise httpx.ReadTimeout("timed out", request=request)

	result = raspi_client(handler).upload("{}")

	assert result.success is False
	assert result.error_message == "ReadTimeout: timed out"
