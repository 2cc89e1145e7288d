"""Static viewer page served at /viewer.

The page reads ``?session=<id>``, opens /ws/sessions/<id> on the same
host and renders the raw stream-json records as they arrive.
"""

VIEWER_HTML = """<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<meta name="viewport" content="width=device-width, initial-scale=1">
<title>mcp-wake viewer</title>
<style>
  body { font-family: ui-monospace, Menlo, Consolas, monospace; margin: 0; background: #111; color: #ddd; }
  header { padding: 12px 16px; background: #1b1b1b; border-bottom: 1px solid #333; position: sticky; top: 0; }
  header .status { float: right; }
  .running { color: #e5c07b; } .complete { color: #98c379; } .error { color: #e06c75; }
  main { padding: 8px 16px 48px; }
  .ev { border-left: 3px solid #444; margin: 8px 0; padding: 4px 10px; white-space: pre-wrap; word-break: break-word; }
  .assistant { border-color: #61afef; }
  .tool_use { border-color: #c678dd; color: #c9a0dc; }
  .tool_result { border-color: #56b6c2; color: #9aa; max-height: 240px; overflow: auto; }
  .result { border-color: #98c379; }
  .notice { color: #888; font-style: italic; }
</style>
</head>
<body>
<header><span id="title">mcp-wake</span><span class="status" id="status">connecting</span></header>
<main id="log"></main>
<script>
(function () {
  var params = new URLSearchParams(window.location.search);
  var sessionId = params.get("session");
  var log = document.getElementById("log");
  var statusEl = document.getElementById("status");
  document.getElementById("title").textContent = sessionId || "no session";

  function add(cls, text) {
    if (!text) return;
    var div = document.createElement("div");
    div.className = "ev " + cls;
    div.textContent = text;
    log.appendChild(div);
    window.scrollTo(0, document.body.scrollHeight);
  }

  function setStatus(status) {
    statusEl.textContent = status;
    statusEl.className = "status " + status;
  }

  function clip(text, max) {
    if (text.length <= max) return text;
    return text.slice(0, max) + "\\n... (truncated, " + (text.length - max) + " more chars)";
  }

  function asText(value) {
    if (value === undefined || value === null) return "";
    if (typeof value === "string") return value;
    if (Array.isArray(value)) {
      return value.map(function (b) { return b && typeof b.text === "string" ? b.text : JSON.stringify(b); }).join("\\n");
    }
    return JSON.stringify(value, null, 2);
  }

  function render(raw) {
    var blocks = raw.message && Array.isArray(raw.message.content) ? raw.message.content : [];
    if (raw.type === "assistant") {
      blocks.forEach(function (b) {
        if (b.type === "text") add("assistant", b.text);
        else if (b.type === "tool_use") add("tool_use", b.name + " " + clip(asText(b.input), 2000));
      });
    } else if (raw.type === "user") {
      blocks.forEach(function (b) {
        if (b.type === "tool_result") add("tool_result", clip(asText(b.content), 2000));
      });
    } else if (raw.type === "result") {
      add("result", raw.result || raw.error || raw.subtype);
    }
  }

  if (!sessionId) {
    add("notice", "Missing ?session=<id> in the URL.");
    setStatus("error");
    return;
  }

  var proto = window.location.protocol === "https:" ? "wss:" : "ws:";
  var ws = new WebSocket(proto + "//" + window.location.host + "/ws/sessions/" + encodeURIComponent(sessionId));
  ws.onmessage = function (msg) {
    var data = JSON.parse(msg.data);
    if (data.type === "connected") setStatus(data.status);
    else if (data.type === "event") render(data.event);
    else if (data.type === "killed") { add("notice", "Session killed."); setStatus("complete"); }
    else if (data.type === "disconnected") {
      add("notice", "Process exited" + (data.exitCode !== null ? " with code " + data.exitCode : "") + (data.error ? ": " + data.error : "."));
      setStatus(data.status);
    }
    else if (data.type === "error") { add("notice", data.message); setStatus("error"); }
  };
  ws.onclose = function () { add("notice", "Stream closed."); };
})();
</script>
</body>
</html>
"""
