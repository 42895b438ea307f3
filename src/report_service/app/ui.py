from __future__ import annotations

from html import escape


def render_homepage(app_name: str = "report-service") -> str:
    return _PAGE.replace("__APP_NAME__", escape(app_name))


_PAGE = """
<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1">
  <title>__APP_NAME__ Console</title>
  <style>
    :root {
      --bg: #f3efe6;
      --panel: #fffaf0;
      --ink: #112433;
      --muted: #5c6b74;
      --accent: #0f8b8d;
      --line: #d7d1c3;
      --warn: #b00020;
    }
    * { box-sizing: border-box; }
    body {
      margin: 0;
      min-height: 100vh;
      font-family: "Space Grotesk", sans-serif;
      color: var(--ink);
      background: var(--bg);
    }
    .wrap { max-width: 900px; margin: 24px auto; padding: 0 16px 24px; display: grid; gap: 16px; }
    .card {
      background: var(--panel);
      border: 1px solid var(--line);
      border-radius: 16px;
      padding: 20px;
    }
    textarea { width: 100%; min-height: 120px; font: inherit; padding: 10px; }
    button {
      margin-top: 8px;
      border: 0;
      border-radius: 10px;
      padding: 10px 16px;
      background: var(--accent);
      color: white;
      font-weight: 700;
      cursor: pointer;
    }
    .report { border-top: 1px solid var(--line); padding: 10px 0; cursor: pointer; }
    .status { font-family: "IBM Plex Mono", monospace; color: var(--muted); }
    .status.FAILED { color: var(--warn); }
    .detail { display: none; margin-top: 8px; }
    .report.open .detail { display: block; }
    pre { white-space: pre-wrap; }
    #error { color: var(--warn); }
  </style>
</head>
<body>
  <div class="wrap">
    <section class="card">
      <h1>__APP_NAME__</h1>
      <form id="submit-form">
        <textarea id="user-input" placeholder="Paste text to analyze"></textarea>
        <button type="submit">Generate Report</button>
      </form>
      <p id="error"></p>
    </section>
    <section class="card">
      <h2>Reports</h2>
      <div id="reports"></div>
    </section>
  </div>
  <script>
    const POLL_MS = 2000;
    let expanded = null;
    let timer = null;

    function renderDetail(raw) {
      let parsed = null;
      try { parsed = JSON.parse(raw); } catch (err) { parsed = null; }
      if (!parsed) {
        const pre = document.createElement("pre");
        pre.textContent = raw;
        return pre;
      }
      const box = document.createElement("div");
      const summary = document.createElement("p");
      summary.textContent = parsed.summary || "";
      box.appendChild(summary);
      const list = document.createElement("ul");
      (parsed.key_points || []).forEach((point) => {
        const item = document.createElement("li");
        item.textContent = point;
        list.appendChild(item);
      });
      box.appendChild(list);
      if (parsed.confidence_score !== undefined) {
        const score = document.createElement("p");
        score.textContent = "Confidence: " + Math.round(parsed.confidence_score * 100) + "%";
        box.appendChild(score);
      }
      return box;
    }

    function render(reports) {
      const root = document.getElementById("reports");
      root.innerHTML = "";
      reports.slice().reverse().forEach((report) => {
        const row = document.createElement("div");
        row.className = "report" + (expanded === report.id ? " open" : "");
        const head = document.createElement("div");
        head.innerHTML = "#" + report.id + " <span class='status " + report.status + "'>"
          + report.status + "</span> " + new Date(report.createdAt).toLocaleString();
        row.appendChild(head);
        const detail = document.createElement("div");
        detail.className = "detail";
        if (report.reportResult) {
          detail.appendChild(renderDetail(report.reportResult));
        }
        row.appendChild(detail);
        row.addEventListener("click", () => {
          expanded = expanded === report.id ? null : report.id;
          render(reports);
        });
        root.appendChild(row);
      });
    }

    async function refresh() {
      const response = await fetch("/api/reports");
      const reports = await response.json();
      render(reports);
      const busy = reports.some((r) => r.status === "PENDING" || r.status === "PROCESSING");
      clearTimeout(timer);
      if (busy) {
        timer = setTimeout(() => refresh().catch(console.error), POLL_MS);
      }
    }

    document.getElementById("submit-form").addEventListener("submit", async (event) => {
      event.preventDefault();
      const input = document.getElementById("user-input");
      const error = document.getElementById("error");
      if (!input.value.trim()) {
        return;
      }
      error.textContent = "";
      try {
        const response = await fetch("/api/reports", {
          method: "POST",
          headers: { "Content-Type": "application/json" },
          body: JSON.stringify({ userInput: input.value }),
        });
        if (!response.ok) {
          throw new Error("HTTP " + response.status);
        }
        const created = await response.json();
        input.value = "";
        expanded = created.id;
        await refresh();
      } catch (err) {
        error.textContent = "Submission failed, please try again";
      }
    });

    refresh().catch(console.error);
  </script>
</body>
</html>
"""
