# --
# Reason phrases for the status codes the server emits.
HTTP_STATUS: dict[int, str] = {
	200: "OK",
	206: "Partial Content",
	304: "Not Modified",
	400: "Bad Request",
	403: "Forbidden",
	404: "Not Found",
	405: "Method Not Allowed",
	416: "Range Not Satisfiable",
	500: "Internal Server Error",
}

# EOF
