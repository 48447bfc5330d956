"""Push job: fans published messages out to comet servers, batching room messages."""