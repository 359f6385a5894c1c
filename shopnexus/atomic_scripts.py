"""
Lua scripts for atomic guest cart updates.

Each script reads, validates and writes the cart hash in one server-side step,
so concurrent requests cannot both pass a limit check. Scripts return
{status, value}; status is one of the codes below.
"""

OK = 0
MAX_QUANTITY_EXCEEDED = -1
MAX_ITEMS_EXCEEDED = -2
LINE_NOT_FOUND = -3

# KEYS[1] cart key; ARGV: product_id, quantity, max_items, max_quantity, ttl
# Returns {OK, new_quantity} or {error_code, limit}
ADD_LINE_SCRIPT = """
local cart_key = KEYS[1]
local product_id = ARGV[1]
local quantity = tonumber(ARGV[2])
local max_items = tonumber(ARGV[3])
local max_quantity = tonumber(ARGV[4])
local ttl = tonumber(ARGV[5])

local is_new = redis.call('HEXISTS', cart_key, product_id) == 0
local existing_qty = 0
if not is_new then
    existing_qty = tonumber(redis.call('HGET', cart_key, product_id)) or 0
end

local new_qty = existing_qty + quantity
if new_qty > max_quantity then
    return {-1, max_quantity}
end

-- Only a new line counts against the item limit
if is_new and redis.call('HLEN', cart_key) >= max_items then
    return {-2, max_items}
end

redis.call('HSET', cart_key, product_id, new_qty)
redis.call('EXPIRE', cart_key, ttl)
return {0, new_qty}
"""

# KEYS[1] cart key; ARGV: product_id, quantity, ttl
# Quantity 0 removes the line. Returns {OK, quantity} or {LINE_NOT_FOUND, 0}
SET_LINE_SCRIPT = """
local cart_key = KEYS[1]
local product_id = ARGV[1]
local quantity = tonumber(ARGV[2])
local ttl = tonumber(ARGV[3])

if redis.call('HEXISTS', cart_key, product_id) == 0 then
    return {-3, 0}
end

if quantity == 0 then
    redis.call('HDEL', cart_key, product_id)
else
    redis.call('HSET', cart_key, product_id, quantity)
end

if redis.call('HLEN', cart_key) > 0 then
    redis.call('EXPIRE', cart_key, ttl)
end
return {0, quantity}
"""
