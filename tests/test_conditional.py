from servedir.http.conditional import (
	Validator,
	etag,
	httpdate,
	isNotModified,
	parseHTTPDate,
)
from servedir.utils.files import FileStat

# 2023-11-14T22:13:20.123Z
MTIME: int = 1_700_000_000_123
STAT = FileStat(size=1234, mtime=MTIME, isDirectory=False)


def test_etag_is_weak_and_derived_from_size_and_mtime() -> None:
	assert etag(STAT) == f'W/"4d2-{MTIME:x}"'
	# Same size and mtime means the same validator, whatever the content
	assert etag(FileStat(1234, MTIME, False)) == etag(STAT)
	assert etag(FileStat(1235, MTIME, False)) != etag(STAT)
	assert etag(FileStat(1234, MTIME + 1, False)) != etag(STAT)


def test_validator() -> None:
	validator = Validator.FromStat(STAT)
	assert validator.etag == etag(STAT)
	assert validator.lastModified == "Tue, 14 Nov 2023 22:13:20 GMT"


def test_http_dates() -> None:
	assert httpdate(0) == "Thu, 01 Jan 1970 00:00:00 GMT"
	assert parseHTTPDate("Thu, 01 Jan 1970 00:00:01 GMT") == 1000
	assert parseHTTPDate("Thu, 01 Jan 1970 00:00:01 -0000") == 1000
	assert parseHTTPDate("yesterday") is None
	assert parseHTTPDate("") is None


def test_if_none_match_requires_exact_etag() -> None:
	assert isNotModified({"If-None-Match": etag(STAT)}, STAT)
	# The weak prefix is part of the comparison
	assert not isNotModified({"If-None-Match": etag(STAT)[2:]}, STAT)
	assert not isNotModified({"If-None-Match": 'W/"0-0"'}, STAT)
	assert not isNotModified({}, STAT)


def test_if_modified_since() -> None:
	# Dates have a one second resolution, so the Last-Modified of a file
	# with sub-second mtime is before the mtime.
	last_modified = httpdate(MTIME)
	assert not isNotModified({"If-Modified-Since": last_modified}, STAT)
	assert isNotModified({"If-Modified-Since": httpdate(MTIME + 1000)}, STAT)
	assert isNotModified(
		{"If-Modified-Since": httpdate(MTIME)},
		FileStat(1234, (MTIME // 1000) * 1000, False),
	)
	assert not isNotModified({"If-Modified-Since": httpdate(MTIME - 60_000)}, STAT)
	assert not isNotModified({"If-Modified-Since": "not a date"}, STAT)


def test_either_validator_is_enough() -> None:
	later = httpdate(MTIME + 1000)
	assert isNotModified({"If-None-Match": 'W/"0-0"', "If-Modified-Since": later}, STAT)
	assert isNotModified(
		{"If-None-Match": etag(STAT), "If-Modified-Since": "not a date"}, STAT
	)


# EOF
